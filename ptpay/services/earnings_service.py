from datetime import datetime, timezone
import logging
from typing import Any, Iterable
import uuid
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.models.payroll import CoachProfile, EmploymentType, Payslip
from ptpay.models.pt import PTSession, PTSessionStatus
from ptpay.services.commission import PayrollRules, _round_money, resolve_commission
from ptpay.services.payslip_service import monthly_salary_for
from ptpay.services.timezone_service import as_utc, get_gym_timezone, month_bounds, start_of_week

logger = logging.getLogger(__name__)


def _is_cancelled(session: Any) -> bool:
    return session.cancelled_at is not None or session.status == PTSessionStatus.CANCELLED


class EarningsService:
    @staticmethod
    def weekly_breakdown(
        sessions: Iterable[Any],
        now: datetime | None = None,
        tz: ZoneInfo | None = None,
        rules: PayrollRules | None = None,
    ) -> dict[str, float]:
        """Pending and paid commission for the coach's current week.

        The week starts on the most recent Sunday 00:00 in the gym timezone.
        """
        rules = rules or PayrollRules.from_settings()
        now = as_utc(now) if now else datetime.now(timezone.utc)
        week_start = start_of_week(now, tz)

        pending_verification = 0.0
        pending_payment = 0.0
        paid_this_week = 0.0
        for session in sessions:
            if session.payment_approved:
                approved_at = as_utc(session.approved_at) if session.approved_at else None
                if approved_at and week_start <= approved_at < now:
                    paid_this_week += resolve_commission(session, rules)
                continue
            if _is_cancelled(session) or not session.coach_verified:
                continue
            if session.member_verified:
                pending_payment += resolve_commission(session, rules)
            else:
                pending_verification += resolve_commission(session, rules)

        pending_verification = _round_money(pending_verification)
        pending_payment = _round_money(pending_payment)
        return {
            "pending_verification": pending_verification,
            "pending_payment": pending_payment,
            "paid_this_week": _round_money(paid_this_week),
            "total_pending": _round_money(pending_verification + pending_payment),
        }

    @staticmethod
    async def weekly_for_coach(
        db: AsyncSession,
        coach_id: uuid.UUID,
        *,
        now: datetime | None = None,
        rules: PayrollRules | None = None,
    ) -> dict[str, float]:
        stmt = select(PTSession).where(PTSession.coach_id == coach_id)
        sessions = (await db.execute(stmt)).scalars().all()
        return EarningsService.weekly_breakdown(sessions, now=now, rules=rules)

    @staticmethod
    async def _approved_commission_between(
        db: AsyncSession,
        coach_id: uuid.UUID,
        start: datetime,
        end: datetime,
        rules: PayrollRules,
    ) -> float:
        stmt = select(PTSession).where(
            PTSession.coach_id == coach_id,
            PTSession.payment_approved.is_(True),
            PTSession.approved_at >= start,
            PTSession.approved_at < end,
        )
        sessions = (await db.execute(stmt)).scalars().all()
        return sum(resolve_commission(session, rules) for session in sessions)

    @staticmethod
    async def _full_time_salary(db: AsyncSession, coach_id: uuid.UUID) -> float:
        result = await db.execute(select(CoachProfile).where(CoachProfile.user_id == coach_id))
        profile = result.scalar_one_or_none()
        if profile is None or profile.employment_type != EmploymentType.FULL_TIME:
            return 0.0
        return monthly_salary_for(profile)

    @staticmethod
    async def month_to_date(
        db: AsyncSession,
        coach_id: uuid.UUID,
        *,
        now: datetime | None = None,
        rules: PayrollRules | None = None,
    ) -> dict[str, Any]:
        """The month's payslip net pay once generated, otherwise an estimate."""
        rules = rules or PayrollRules.from_settings()
        tz = get_gym_timezone()
        local_now = as_utc(now).astimezone(tz) if now else datetime.now(tz)

        stmt = select(Payslip).where(
            Payslip.user_id == coach_id,
            Payslip.month == local_now.month,
            Payslip.year == local_now.year,
        )
        payslip = (await db.execute(stmt)).scalar_one_or_none()
        if payslip is not None:
            return {"amount": _round_money(payslip.net_pay), "source": "payslip"}

        start, end = month_bounds(local_now.year, local_now.month, tz)
        commission = await EarningsService._approved_commission_between(db, coach_id, start, end, rules)
        salary = await EarningsService._full_time_salary(db, coach_id)
        return {"amount": _round_money(salary + commission), "source": "estimate"}

    @staticmethod
    async def year_to_date(
        db: AsyncSession,
        coach_id: uuid.UUID,
        year: int,
        *,
        now: datetime | None = None,
        rules: PayrollRules | None = None,
    ) -> dict[str, Any]:
        rules = rules or PayrollRules.from_settings()
        tz = get_gym_timezone()

        stmt = select(Payslip.net_pay).where(Payslip.user_id == coach_id, Payslip.year == year)
        net_amounts = (await db.execute(stmt)).scalars().all()
        if net_amounts:
            return {"amount": _round_money(sum(net_amounts)), "source": "payslips", "payslip_count": len(net_amounts)}

        start, _ = month_bounds(year, 1, tz)
        _, end = month_bounds(year, 12, tz)
        commission = await EarningsService._approved_commission_between(db, coach_id, start, end, rules)

        local_now = as_utc(now).astimezone(tz) if now else datetime.now(tz)
        if local_now.year > year:
            months_elapsed = 12
        elif local_now.year < year:
            months_elapsed = 0
        else:
            months_elapsed = local_now.month
        salary = await EarningsService._full_time_salary(db, coach_id)
        return {
            "amount": _round_money(commission + salary * months_elapsed),
            "source": "estimate",
            "payslip_count": 0,
        }
