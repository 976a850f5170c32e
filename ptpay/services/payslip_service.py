from calendar import monthrange
from datetime import datetime, timezone
import logging
from typing import Any, Iterable
import uuid
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.core.exceptions import DuplicateError, NotFoundError, ProfileMissingError, ValidationError
from ptpay.models.classes import GymClass
from ptpay.models.enums import Role
from ptpay.models.payroll import CoachProfile, EmploymentType, Payslip, PayslipStatus
from ptpay.models.pt import PTSession, PTSessionStatus
from ptpay.models.user import User
from ptpay.services.audit_service import AuditService
from ptpay.services.change_feed import change_feed
from ptpay.services.commission import PayrollRules, _round_money, resolve_commission
from ptpay.services.timezone_service import as_utc, get_gym_timezone, month_bounds

logger = logging.getLogger(__name__)

PAYROLL_SESSION_STATUSES = (PTSessionStatus.ATTENDED, PTSessionStatus.COMPLETED)
WEEK_BUCKETS = 5


def _next_period(month: int, year: int) -> tuple[int, int]:
    return (1, year + 1) if month == 12 else (month + 1, year)


def monthly_salary_for(profile: CoachProfile) -> float:
    if profile.monthly_salary is not None:
        return float(profile.monthly_salary)
    return float(profile.base_salary or 0.0)


def class_rate_for(profile: CoachProfile, rules: PayrollRules) -> float:
    if profile.rate_per_class is not None:
        return float(profile.rate_per_class)
    if profile.hourly_rate is not None:
        return float(profile.hourly_rate)
    return rules.default_class_rate


def weekly_pt_breakdown(
    sessions: Iterable[Any],
    rules: PayrollRules,
    tz: ZoneInfo | None = None,
) -> list[dict[str, float | int]]:
    """Commission per fixed 7-day bucket of the month (days 1-7, 8-14, ...).

    Days 29-31 fall in the fifth bucket. Buckets without sessions are left out.
    """
    tz = tz or get_gym_timezone()
    counts = [0] * WEEK_BUCKETS
    amounts = [0.0] * WEEK_BUCKETS
    for session in sessions:
        local_day = as_utc(session.scheduled_at).astimezone(tz).day
        bucket = min((local_day - 1) // 7, WEEK_BUCKETS - 1)
        counts[bucket] += 1
        amounts[bucket] += resolve_commission(session, rules)

    return [
        {"week": index + 1, "amount": _round_money(amounts[index])}
        for index in range(WEEK_BUCKETS)
        if counts[index] > 0 or amounts[index] > 0
    ]


def payment_date_for(employment_type: EmploymentType, month: int, year: int, tz: ZoneInfo | None = None) -> datetime:
    """Full-time: 1st of the following month. Part-time: last day of the following month."""
    tz = tz or get_gym_timezone()
    next_month, next_year = _next_period(month, year)
    if employment_type == EmploymentType.FULL_TIME:
        day = 1
    else:
        day = monthrange(next_year, next_month)[1]
    return datetime(next_year, next_month, day, tzinfo=tz).astimezone(timezone.utc)


def recompute_totals(payslip: Payslip) -> None:
    """Derive total_deductions and net_pay from gross pay and the stored parts."""
    payslip.total_deductions = _round_money(float(payslip.cpf_contribution or 0.0) + float(payslip.other_deductions or 0.0))
    payslip.net_pay = _round_money(float(payslip.gross_pay or 0.0) - payslip.total_deductions)


def compute_payslip_figures(
    profile: CoachProfile,
    class_durations: Iterable[int | None],
    sessions: list[Any],
    month: int,
    year: int,
    *,
    rules: PayrollRules,
    other_deductions: float = 0.0,
    tz: ZoneInfo | None = None,
) -> dict[str, Any]:
    is_full_time = profile.employment_type == EmploymentType.FULL_TIME
    monthly_salary = monthly_salary_for(profile)
    rate_per_class = class_rate_for(profile, rules)

    class_hours = sum(
        (duration if duration is not None else rules.default_class_duration_minutes) / 60
        for duration in class_durations
    )
    class_earnings = 0.0 if is_full_time else class_hours * rate_per_class

    pt_commission = sum(resolve_commission(session, rules) for session in sessions)
    gross_pay = (monthly_salary if is_full_time else class_earnings) + pt_commission
    cpf_contribution = _round_money(gross_pay * rules.cpf_rate)
    total_deductions = _round_money(cpf_contribution + other_deductions)

    return {
        "employment_type": profile.employment_type,
        "base_salary": _round_money(monthly_salary if is_full_time else 0.0),
        "class_earnings": _round_money(class_earnings),
        "class_hours": round(class_hours, 2),
        "class_rate_per_hour": _round_money(rate_per_class),
        "pt_commission": _round_money(pt_commission),
        "pt_session_count": len(sessions),
        "pt_weekly_breakdown": weekly_pt_breakdown(sessions, rules, tz),
        "gross_pay": _round_money(gross_pay),
        "cpf_contribution": cpf_contribution,
        "other_deductions": _round_money(other_deductions),
        "deduction_details": [],
        "total_deductions": total_deductions,
        "net_pay": _round_money(gross_pay - total_deductions),
        "payment_date": payment_date_for(profile.employment_type, month, year, tz),
    }


def serialize_payslip(payslip: Payslip, user: User | None = None) -> dict[str, Any]:
    data = {
        "id": str(payslip.id),
        "user_id": str(payslip.user_id),
        "month": payslip.month,
        "year": payslip.year,
        "employment_type": payslip.employment_type.value,
        "base_salary": payslip.base_salary,
        "class_earnings": payslip.class_earnings,
        "class_hours": payslip.class_hours,
        "class_rate_per_hour": payslip.class_rate_per_hour,
        "pt_commission": payslip.pt_commission,
        "pt_session_count": payslip.pt_session_count,
        "pt_weekly_breakdown": list(payslip.pt_weekly_breakdown or []),
        "bonus": payslip.bonus,
        "bonus_description": payslip.bonus_description,
        "gross_pay": payslip.gross_pay,
        "cpf_contribution": payslip.cpf_contribution,
        "other_deductions": payslip.other_deductions,
        "deduction_details": list(payslip.deduction_details or []),
        "total_deductions": payslip.total_deductions,
        "net_pay": payslip.net_pay,
        "status": payslip.status.value,
        "payment_date": as_utc(payslip.payment_date).isoformat() if payslip.payment_date else None,
    }
    if user is not None:
        data["user_name"] = user.full_name
        data["user_email"] = user.email
    return data


class PayslipService:
    @staticmethod
    async def get_payslip(db: AsyncSession, payslip_id: uuid.UUID) -> Payslip:
        payslip = await db.get(Payslip, payslip_id)
        if not payslip:
            raise NotFoundError("Payslip not found")
        return payslip

    @staticmethod
    async def find_existing(db: AsyncSession, coach_id: uuid.UUID, month: int, year: int) -> Payslip | None:
        stmt = select(Payslip).where(
            Payslip.user_id == coach_id,
            Payslip.month == month,
            Payslip.year == year,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def generate_payslip(
        db: AsyncSession,
        coach_id: uuid.UUID,
        month: int,
        year: int,
        *,
        actor_id: uuid.UUID | None = None,
        other_deductions: float = 0.0,
        rules: PayrollRules | None = None,
    ) -> Payslip:
        """Create the pending payslip of one coach for one calendar month.

        Single generation, bulk generation and the scheduler all come through
        here. Nothing is written unless the whole payslip is.
        """
        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12")
        if other_deductions < 0:
            raise ValidationError("other_deductions cannot be negative")

        coach = await db.get(User, coach_id)
        if not coach:
            raise ValidationError("Coach not found")

        if await PayslipService.find_existing(db, coach_id, month, year):
            raise DuplicateError("Payslip already exists for this coach and period")

        profile_result = await db.execute(select(CoachProfile).where(CoachProfile.user_id == coach_id))
        profile = profile_result.scalar_one_or_none()
        if not profile:
            raise ProfileMissingError("Coach profile not found")

        rules = rules or PayrollRules.from_settings()
        tz = get_gym_timezone()
        start, end = month_bounds(year, month, tz)

        classes_stmt = select(GymClass.duration_minutes).where(
            GymClass.lead_coach_id == coach_id,
            GymClass.scheduled_at >= start,
            GymClass.scheduled_at < end,
        )
        class_durations = (await db.execute(classes_stmt)).scalars().all()

        sessions_stmt = select(PTSession).where(
            PTSession.coach_id == coach_id,
            PTSession.status.in_(PAYROLL_SESSION_STATUSES),
            PTSession.scheduled_at >= start,
            PTSession.scheduled_at < end,
        )
        sessions = list((await db.execute(sessions_stmt)).scalars().all())

        figures = compute_payslip_figures(
            profile,
            class_durations,
            sessions,
            month,
            year,
            rules=rules,
            other_deductions=other_deductions,
            tz=tz,
        )
        payslip = Payslip(
            user_id=coach_id,
            month=month,
            year=year,
            bonus=0.0,
            status=PayslipStatus.PENDING,
            **figures,
        )

        try:
            db.add(payslip)
            await AuditService.log_action(
                db,
                actor_id,
                "GENERATE_PAYSLIP",
                str(coach_id),
                f"period={month:02d}/{year}, gross={payslip.gross_pay}, net={payslip.net_pay}",
            )
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateError("Payslip already exists for this coach and period") from exc
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Payslip generated for coach %s %02d/%s: gross=%s net=%s sessions=%s",
            coach_id,
            month,
            year,
            payslip.gross_pay,
            payslip.net_pay,
            payslip.pt_session_count,
        )
        change_feed.publish("payslips", coach_id)
        return payslip

    @staticmethod
    async def list_for_period(db: AsyncSession, month: int, year: int) -> list[tuple[Payslip, User]]:
        stmt = (
            select(Payslip, User)
            .join(User, User.id == Payslip.user_id)
            .where(Payslip.month == month, Payslip.year == year)
            .order_by(Payslip.created_at.desc())
        )
        return [(payslip, user) for payslip, user in (await db.execute(stmt)).all()]

    @staticmethod
    async def list_for_coach(db: AsyncSession, coach_id: uuid.UUID) -> list[Payslip]:
        stmt = (
            select(Payslip)
            .where(Payslip.user_id == coach_id)
            .order_by(Payslip.year.desc(), Payslip.month.desc())
        )
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    async def period_overview(db: AsyncSession, month: int, year: int) -> dict[str, Any]:
        """Every coach next to its payslip for the period, with period totals."""
        coaches_stmt = (
            select(User, CoachProfile)
            .outerjoin(CoachProfile, CoachProfile.user_id == User.id)
            .where(User.role == Role.COACH)
            .order_by(User.full_name)
        )
        coaches = (await db.execute(coaches_stmt)).all()
        payslips = {payslip.user_id: payslip for payslip, _ in await PayslipService.list_for_period(db, month, year)}

        rows = []
        for coach, profile in coaches:
            payslip = payslips.get(coach.id)
            rows.append(
                {
                    "coach_id": str(coach.id),
                    "coach_name": coach.full_name,
                    "is_active": coach.is_active,
                    "employment_type": profile.employment_type.value if profile else None,
                    "payslip": serialize_payslip(payslip) if payslip else None,
                }
            )
        return {
            "month": month,
            "year": year,
            "rows": rows,
            "total_gross": _round_money(sum(p.gross_pay or 0.0 for p in payslips.values())),
            "total_net": _round_money(sum(p.net_pay or 0.0 for p in payslips.values())),
        }

    @staticmethod
    async def delete_payslip(db: AsyncSession, payslip_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        payslip = await PayslipService.get_payslip(db, payslip_id)
        coach_id = payslip.user_id
        await db.delete(payslip)
        await AuditService.log_action(
            db,
            actor_id,
            "DELETE_PAYSLIP",
            str(payslip_id),
            f"coach={coach_id}, period={payslip.month:02d}/{payslip.year}",
        )
        await db.commit()
        change_feed.publish("payslips", coach_id)
