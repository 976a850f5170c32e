from datetime import date, datetime, timezone
from types import SimpleNamespace
import uuid
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.core.exceptions import DuplicateError, NotFoundError, ProfileMissingError, ValidationError
from ptpay.models.audit import AuditLog
from ptpay.models.classes import GymClass
from ptpay.models.enums import Role
from ptpay.models.payroll import EmploymentType, Payslip, PayslipStatus
from ptpay.models.pt import PTSessionStatus
from ptpay.services.commission import PayrollRules
from ptpay.services.payslip_service import PayslipService, payment_date_for, weekly_pt_breakdown
from ptpay.services.timezone_service import as_utc
from factories import make_profile, make_session, make_user

SGT = ZoneInfo("Asia/Singapore")
RULES = PayrollRules()


def _local(year, month, day, hour=10):
    return datetime(year, month, day, hour, 0, tzinfo=SGT)


async def _add_classes(db: AsyncSession, coach, count: int, *, duration_minutes=60, day=2):
    for index in range(count):
        db.add(
            GymClass(
                name=f"HIIT {index}",
                lead_coach_id=coach.id,
                scheduled_at=_local(2026, 3, day + index).astimezone(timezone.utc),
                duration_minutes=duration_minutes,
            )
        )
    await db.commit()


async def _payslip_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(Payslip.id)))).scalar_one()


@pytest.mark.asyncio
async def test_part_time_payslip(db_session: AsyncSession, admin, coach, member):
    await make_profile(db_session, coach, EmploymentType.PART_TIME, hourly_rate=50.0)
    await _add_classes(db_session, coach, 10)
    for day in (3, 5, 12, 20):
        await make_session(db_session, coach, member, _local(2026, 3, day), status=PTSessionStatus.ATTENDED, session_price=90.0)

    # Outside the payroll selection
    db_session.add(GymClass(name="Next month", lead_coach_id=coach.id, scheduled_at=_local(2026, 4, 1, 0).astimezone(timezone.utc)))
    await db_session.commit()
    await make_session(db_session, coach, member, _local(2026, 3, 25), session_price=90.0)
    await make_session(db_session, coach, member, _local(2026, 4, 1, 0), status=PTSessionStatus.COMPLETED, session_price=90.0)
    other_coach = await make_user(db_session, Role.COACH, "Other Coach")
    await make_session(db_session, other_coach, member, _local(2026, 3, 6), status=PTSessionStatus.ATTENDED)

    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, actor_id=admin.id, rules=RULES)

    assert payslip.employment_type == EmploymentType.PART_TIME
    assert payslip.class_hours == 10.0
    assert payslip.class_rate_per_hour == 50.0
    assert payslip.class_earnings == 500.0
    assert payslip.base_salary == 0.0
    assert payslip.pt_commission == 180.0
    assert payslip.pt_session_count == 4
    assert payslip.gross_pay == 680.0
    assert payslip.cpf_contribution == 115.6
    assert payslip.other_deductions == 0.0
    assert payslip.total_deductions == 115.6
    assert payslip.net_pay == 564.4
    assert payslip.status == PayslipStatus.PENDING
    assert payslip.pt_weekly_breakdown == [
        {"week": 1, "amount": 90.0},
        {"week": 2, "amount": 45.0},
        {"week": 3, "amount": 45.0},
    ]
    assert as_utc(payslip.payment_date).astimezone(SGT).date() == date(2026, 4, 30)

    audit = (await db_session.execute(select(AuditLog).where(AuditLog.action == "GENERATE_PAYSLIP"))).scalar_one()
    assert audit.user_id == admin.id
    assert audit.target_id == str(coach.id)


@pytest.mark.asyncio
async def test_full_time_payslip_ignores_classes(db_session: AsyncSession, coach, member):
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, monthly_salary=3000.0, hourly_rate=50.0)
    await _add_classes(db_session, coach, 4)
    await make_session(db_session, coach, member, _local(2026, 3, 9), status=PTSessionStatus.COMPLETED, commission_amount=50.0)

    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)

    assert payslip.base_salary == 3000.0
    assert payslip.class_hours == 4.0
    assert payslip.class_earnings == 0.0
    assert payslip.pt_commission == 50.0
    assert payslip.gross_pay == 3050.0
    assert payslip.cpf_contribution == 518.5
    assert payslip.net_pay == 2531.5
    assert as_utc(payslip.payment_date).astimezone(SGT).date() == date(2026, 4, 1)


@pytest.mark.asyncio
async def test_full_time_falls_back_to_base_salary(db_session: AsyncSession, coach):
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, base_salary=2500.0)
    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)
    assert payslip.base_salary == 2500.0
    assert payslip.gross_pay == 2500.0
    assert payslip.pt_weekly_breakdown == []


@pytest.mark.asyncio
async def test_class_rate_precedence_and_default_duration(db_session: AsyncSession, coach):
    await make_profile(db_session, coach, EmploymentType.PART_TIME, rate_per_class=40.0, hourly_rate=50.0)
    await _add_classes(db_session, coach, 2, duration_minutes=None)
    await _add_classes(db_session, coach, 1, duration_minutes=30, day=20)

    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)

    assert payslip.class_hours == 2.5
    assert payslip.class_rate_per_hour == 40.0
    assert payslip.class_earnings == 100.0


@pytest.mark.asyncio
async def test_part_time_without_rates_uses_default(db_session: AsyncSession, coach):
    await make_profile(db_session, coach, EmploymentType.PART_TIME)
    await _add_classes(db_session, coach, 1)
    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)
    assert payslip.class_earnings == 50.0


@pytest.mark.asyncio
async def test_injected_cpf_rate(db_session: AsyncSession, coach):
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, monthly_salary=1000.0)
    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=PayrollRules(cpf_rate=0.2))
    assert payslip.cpf_contribution == 200.0
    assert payslip.net_pay == 800.0


@pytest.mark.asyncio
async def test_duplicate_payslip_is_rejected(db_session: AsyncSession, coach):
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, monthly_salary=3000.0)
    await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)

    with pytest.raises(DuplicateError):
        await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)
    assert await _payslip_count(db_session) == 1


@pytest.mark.asyncio
async def test_missing_profile_writes_nothing(db_session: AsyncSession, coach):
    with pytest.raises(ProfileMissingError):
        await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)
    assert await _payslip_count(db_session) == 0


@pytest.mark.asyncio
async def test_unknown_coach_and_bad_month(db_session: AsyncSession, coach):
    with pytest.raises(ValidationError):
        await PayslipService.generate_payslip(db_session, uuid.uuid4(), 3, 2026, rules=RULES)
    with pytest.raises(ValidationError):
        await PayslipService.generate_payslip(db_session, coach.id, 13, 2026, rules=RULES)


def test_weekly_breakdown_omits_empty_weeks():
    sessions = [
        SimpleNamespace(scheduled_at=_local(2026, 3, 3), payment_amount=None, commission_amount=30.0, session_price=None),
        SimpleNamespace(scheduled_at=_local(2026, 3, 10), payment_amount=None, commission_amount=None, session_price=100.0),
    ]
    assert weekly_pt_breakdown(sessions, RULES, SGT) == [{"week": 1, "amount": 30.0}, {"week": 2, "amount": 50.0}]


def test_weekly_breakdown_month_end_goes_to_fifth_week():
    sessions = [
        SimpleNamespace(scheduled_at=_local(2026, 3, day), payment_amount=None, commission_amount=10.0, session_price=None)
        for day in (29, 30, 31)
    ]
    # 31 Mar 02:00 local is still 30 Mar in UTC
    sessions.append(
        SimpleNamespace(
            scheduled_at=_local(2026, 3, 31, 2).astimezone(timezone.utc),
            payment_amount=None,
            commission_amount=5.0,
            session_price=None,
        )
    )
    assert weekly_pt_breakdown(sessions, RULES, SGT) == [{"week": 5, "amount": 35.0}]


def test_weekly_breakdown_keeps_every_seventh_day():
    sessions = [
        SimpleNamespace(scheduled_at=_local(2026, 3, day), payment_amount=None, commission_amount=10.0, session_price=None)
        for day in (7, 8, 14, 21, 28)
    ]
    assert weekly_pt_breakdown(sessions, RULES, SGT) == [
        {"week": 1, "amount": 10.0},
        {"week": 2, "amount": 20.0},
        {"week": 3, "amount": 10.0},
        {"week": 4, "amount": 10.0},
    ]


@pytest.mark.asyncio
async def test_classes_on_last_day_of_month_are_paid(db_session: AsyncSession, coach):
    await make_profile(db_session, coach, EmploymentType.PART_TIME, rate_per_class=40.0)
    await _add_classes(db_session, coach, 1, day=31)
    db_session.add(
        GymClass(
            name="April HIIT",
            lead_coach_id=coach.id,
            scheduled_at=datetime(2026, 4, 1, 0, 0, tzinfo=SGT).astimezone(timezone.utc),
            duration_minutes=60,
        )
    )
    await db_session.commit()

    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)

    assert payslip.class_hours == 1.0
    assert payslip.class_earnings == 40.0


def test_payment_date_rolls_over_the_year():
    full_time = payment_date_for(EmploymentType.FULL_TIME, 12, 2026, SGT)
    part_time = payment_date_for(EmploymentType.PART_TIME, 12, 2026, SGT)
    assert full_time.astimezone(SGT).date() == date(2027, 1, 1)
    assert part_time.astimezone(SGT).date() == date(2027, 1, 31)
    assert payment_date_for(EmploymentType.PART_TIME, 1, 2028, SGT).astimezone(SGT).date() == date(2028, 2, 29)


@pytest.mark.asyncio
async def test_listing_and_overview(db_session: AsyncSession, admin, coach):
    idle_coach = await make_user(db_session, Role.COACH, "Idle Coach")
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, monthly_salary=1000.0)
    await PayslipService.generate_payslip(db_session, coach.id, 2, 2026, rules=RULES)
    await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)

    mine = await PayslipService.list_for_coach(db_session, coach.id)
    assert [(p.year, p.month) for p in mine] == [(2026, 3), (2026, 2)]

    rows = await PayslipService.list_for_period(db_session, 3, 2026)
    assert [user.id for _, user in rows] == [coach.id]

    overview = await PayslipService.period_overview(db_session, 3, 2026)
    by_coach = {row["coach_id"]: row for row in overview["rows"]}
    assert by_coach[str(idle_coach.id)]["payslip"] is None
    assert by_coach[str(coach.id)]["payslip"]["gross_pay"] == 1000.0
    assert overview["total_gross"] == 1000.0
    assert overview["total_net"] == 830.0


@pytest.mark.asyncio
async def test_delete_payslip(db_session: AsyncSession, admin, coach):
    await make_profile(db_session, coach, EmploymentType.FULL_TIME, monthly_salary=1000.0)
    payslip = await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)

    await PayslipService.delete_payslip(db_session, payslip.id, admin.id)

    assert await _payslip_count(db_session) == 0
    with pytest.raises(NotFoundError):
        await PayslipService.get_payslip(db_session, payslip.id)
    # Can be regenerated after deletion
    await PayslipService.generate_payslip(db_session, coach.id, 3, 2026, rules=RULES)
