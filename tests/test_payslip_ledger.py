import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.core.exceptions import NotFoundError, ValidationError
from ptpay.models.audit import AuditLog
from ptpay.models.payroll import EmploymentType, Payslip, PayslipStatus
from ptpay.services.commission import PayrollRules
from ptpay.services.payslip_ledger_service import PayslipLedgerService
from ptpay.services.payslip_service import PayslipService
from factories import make_profile


@pytest.fixture
async def payslip(db_session: AsyncSession, coach) -> Payslip:
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, monthly_salary=2000.0)
    return await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=PayrollRules())


def _assert_totals(payslip: Payslip) -> None:
    assert payslip.total_deductions == round(payslip.cpf_contribution + payslip.other_deductions, 2)
    assert payslip.net_pay == round(payslip.gross_pay - payslip.total_deductions, 2)
    assert payslip.other_deductions == round(sum(d["amount"] for d in payslip.deduction_details), 2)


@pytest.mark.asyncio
async def test_toggle_status_round_trip(db_session: AsyncSession, admin, payslip):
    paid = await PayslipLedgerService.toggle_status(db_session, payslip.id, admin.id)
    assert paid.status == PayslipStatus.PAID
    assert paid.payment_date is not None
    assert paid.updated_at is not None

    pending = await PayslipLedgerService.toggle_status(db_session, payslip.id, admin.id)
    assert pending.status == PayslipStatus.PENDING
    assert pending.payment_date is None


@pytest.mark.asyncio
async def test_add_deductions_keeps_totals_consistent(db_session: AsyncSession, admin, payslip):
    assert payslip.cpf_contribution == 340.0

    await PayslipLedgerService.add_deduction(db_session, payslip.id, "Uniform", 25.5, admin.id)
    updated = await PayslipLedgerService.add_deduction(db_session, payslip.id, "  Locker  ", 10.0, admin.id)

    assert [d["description"] for d in updated.deduction_details] == ["Uniform", "Locker"]
    assert len({d["id"] for d in updated.deduction_details}) == 2
    assert updated.other_deductions == 35.5
    assert updated.total_deductions == 375.5
    assert updated.net_pay == 1624.5
    _assert_totals(updated)

    stored = (await db_session.execute(select(Payslip).where(Payslip.id == payslip.id))).scalar_one()
    await db_session.refresh(stored)
    assert len(stored.deduction_details) == 2

    actions = (await db_session.execute(select(AuditLog.action).where(AuditLog.target_id == str(payslip.id)))).scalars().all()
    assert actions.count("ADD_PAYSLIP_DEDUCTION") == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "description, amount",
    [("Fine", 0), ("Fine", -3.0), ("  ", 10.0), ("Fine", float("nan")), ("Fine", float("inf"))],
)
async def test_add_deduction_validation(db_session: AsyncSession, admin, payslip, description, amount):
    with pytest.raises(ValidationError):
        await PayslipLedgerService.add_deduction(db_session, payslip.id, description, amount, admin.id)
    assert payslip.other_deductions == 0.0


@pytest.mark.asyncio
async def test_update_cpf_recomputes_net(db_session: AsyncSession, admin, payslip):
    await PayslipLedgerService.add_deduction(db_session, payslip.id, "Advance", 100.0, admin.id)

    updated = await PayslipLedgerService.update_cpf(db_session, payslip.id, 0, admin.id)

    assert updated.cpf_contribution == 0.0
    assert updated.total_deductions == 100.0
    assert updated.net_pay == 1900.0
    _assert_totals(updated)


@pytest.mark.asyncio
async def test_update_cpf_rejects_negative(db_session: AsyncSession, admin, payslip):
    with pytest.raises(ValidationError):
        await PayslipLedgerService.update_cpf(db_session, payslip.id, -1.0, admin.id)
    assert payslip.cpf_contribution == 340.0


@pytest.mark.asyncio
async def test_ledger_on_unknown_payslip(db_session: AsyncSession, admin):
    with pytest.raises(NotFoundError):
        await PayslipLedgerService.toggle_status(db_session, uuid.uuid4(), admin.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [float("nan"), float("inf")])
async def test_update_cpf_rejects_non_finite(db_session: AsyncSession, admin, payslip, amount):
    with pytest.raises(ValidationError):
        await PayslipLedgerService.update_cpf(db_session, payslip.id, amount, admin.id)
    assert payslip.cpf_contribution == 340.0
    _assert_totals(payslip)
