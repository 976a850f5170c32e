from datetime import datetime, timezone
import logging
import math
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.core.exceptions import ValidationError
from ptpay.models.payroll import Payslip, PayslipStatus
from ptpay.services.audit_service import AuditService
from ptpay.services.change_feed import change_feed
from ptpay.services.commission import _round_money
from ptpay.services.payslip_service import PayslipService, recompute_totals

logger = logging.getLogger(__name__)


class PayslipLedgerService:
    """Admin adjustments to a generated payslip.

    Each call is a read-modify-write of one row. Two admins editing the same
    payslip at once resolve last-write-wins.
    """

    @staticmethod
    async def _save(db: AsyncSession, payslip: Payslip, actor_id: uuid.UUID, action: str, details: str) -> Payslip:
        payslip.updated_at = datetime.now(timezone.utc)
        await AuditService.log_action(db, actor_id, action, str(payslip.id), details)
        await db.commit()
        change_feed.publish("payslips", payslip.user_id)
        return payslip

    @staticmethod
    async def toggle_status(db: AsyncSession, payslip_id: uuid.UUID, actor_id: uuid.UUID) -> Payslip:
        payslip = await PayslipService.get_payslip(db, payslip_id)
        if payslip.status == PayslipStatus.PAID:
            payslip.status = PayslipStatus.PENDING
            payslip.payment_date = None
        else:
            payslip.status = PayslipStatus.PAID
            payslip.payment_date = datetime.now(timezone.utc)
        return await PayslipLedgerService._save(
            db, payslip, actor_id, "UPDATE_PAYSLIP_STATUS", f"status={payslip.status.value}"
        )

    @staticmethod
    async def add_deduction(
        db: AsyncSession,
        payslip_id: uuid.UUID,
        description: str,
        amount: float,
        actor_id: uuid.UUID,
    ) -> Payslip:
        description = (description or "").strip()
        if not description:
            raise ValidationError("Deduction description is required")
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise ValidationError("Deduction amount must be a finite amount greater than zero")

        payslip = await PayslipService.get_payslip(db, payslip_id)
        amount = _round_money(amount)
        # Reassign so the JSON column is flagged dirty.
        payslip.deduction_details = list(payslip.deduction_details or []) + [
            {"id": str(uuid.uuid4()), "description": description, "amount": amount}
        ]
        payslip.other_deductions = _round_money(float(payslip.other_deductions or 0.0) + amount)
        recompute_totals(payslip)
        return await PayslipLedgerService._save(
            db, payslip, actor_id, "ADD_PAYSLIP_DEDUCTION", f"description={description}, amount={amount}"
        )

    @staticmethod
    async def update_cpf(db: AsyncSession, payslip_id: uuid.UUID, amount: float, actor_id: uuid.UUID) -> Payslip:
        if amount is None or not math.isfinite(amount) or amount < 0:
            raise ValidationError("CPF contribution cannot be negative")

        payslip = await PayslipService.get_payslip(db, payslip_id)
        previous = payslip.cpf_contribution
        payslip.cpf_contribution = _round_money(amount)
        recompute_totals(payslip)
        logger.info("CPF for payslip %s changed from %s to %s", payslip.id, previous, payslip.cpf_contribution)
        return await PayslipLedgerService._save(
            db, payslip, actor_id, "UPDATE_PAYSLIP_CPF", f"cpf={previous}->{payslip.cpf_contribution}"
        )
