from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.config import settings
from ptpay.core.exceptions import DuplicateError, ValidationError
from ptpay.models.enums import Role
from ptpay.models.user import User
from ptpay.services.audit_service import AuditService
from ptpay.services.commission import PayrollRules
from ptpay.services.payslip_service import PayslipService
from ptpay.services.timezone_service import get_gym_timezone

logger = logging.getLogger(__name__)


@dataclass
class BulkGenerationResult:
    created: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"created": self.created, "skipped": self.skipped, "errors": self.errors}


@dataclass
class AutomationRunSummary:
    started_at: str
    finished_at: str
    duration_seconds: float
    month: int
    year: int
    coaches_scanned: int
    created: int
    skipped: int
    errors: list[dict[str, str]]
    reason: str


class PayslipAutomationService:
    _last_run: dict = {
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
        "last_summary": None,
    }

    @staticmethod
    def _prev_period(month: int, year: int) -> tuple[int, int]:
        return (12, year - 1) if month == 1 else (month - 1, year)

    @staticmethod
    def period_to_generate(now_utc: datetime | None = None) -> tuple[int, int]:
        """The month before the current local month."""
        now_utc = now_utc or datetime.now(timezone.utc)
        local_now = now_utc.astimezone(get_gym_timezone())
        return PayslipAutomationService._prev_period(local_now.month, local_now.year)

    @staticmethod
    def is_generation_day(now_utc: datetime | None = None) -> bool:
        now_utc = now_utc or datetime.now(timezone.utc)
        return now_utc.astimezone(get_gym_timezone()).day == settings.PAYSLIP_AUTO_DAY

    @staticmethod
    async def _active_coaches(db: AsyncSession) -> list[User]:
        stmt = (
            select(User)
            .where(User.role == Role.COACH, User.is_active.is_(True))
            .order_by(User.full_name, User.email)
        )
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    async def bulk_generate(
        db: AsyncSession,
        month: int,
        year: int,
        *,
        actor_id: uuid.UUID | None = None,
        rules: PayrollRules | None = None,
    ) -> BulkGenerationResult:
        """Generate payslips for every active coach.

        A coach that already has a payslip is skipped. Any other failure is
        recorded for that coach only; earlier coaches stay committed.
        """
        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12")

        rules = rules or PayrollRules.from_settings()
        coaches = await PayslipAutomationService._active_coaches(db)
        # Plain values survive the per-coach rollbacks below.
        targets = [(coach.id, coach.full_name or coach.email) for coach in coaches]

        result = BulkGenerationResult()
        for coach_id, coach_name in targets:
            try:
                await PayslipService.generate_payslip(db, coach_id, month, year, actor_id=actor_id, rules=rules)
                result.created += 1
            except DuplicateError:
                result.skipped += 1
            except Exception as exc:
                await db.rollback()
                logger.exception("Payslip generation failed for coach %s %02d/%s", coach_id, month, year)
                message = exc.message if hasattr(exc, "message") else str(exc)
                result.errors.append({"coach_id": str(coach_id), "coach_name": coach_name, "message": message})

        await AuditService.log_action(
            db,
            actor_id,
            "BULK_GENERATE_PAYSLIPS",
            None,
            f"period={month:02d}/{year}, coaches={len(targets)}, created={result.created}, "
            f"skipped={result.skipped}, errors={len(result.errors)}",
        )
        await db.commit()
        logger.info(
            "Bulk payslip generation %02d/%s: created=%s skipped=%s errors=%s",
            month,
            year,
            result.created,
            result.skipped,
            len(result.errors),
        )
        return result

    @staticmethod
    async def run(
        db: AsyncSession,
        *,
        month: int | None = None,
        year: int | None = None,
        actor_id: uuid.UUID | None = None,
        reason: str = "manual",
    ) -> dict:
        started = datetime.now(timezone.utc)
        if month is None or year is None:
            month, year = PayslipAutomationService.period_to_generate(started)

        coaches_scanned = len(await PayslipAutomationService._active_coaches(db))
        result = await PayslipAutomationService.bulk_generate(db, month, year, actor_id=actor_id)

        finished = datetime.now(timezone.utc)
        summary = AutomationRunSummary(
            started_at=started.isoformat(),
            finished_at=finished.isoformat(),
            duration_seconds=round((finished - started).total_seconds(), 3),
            month=month,
            year=year,
            coaches_scanned=coaches_scanned,
            created=result.created,
            skipped=result.skipped,
            errors=result.errors[:100],
            reason=reason,
        )

        PayslipAutomationService._last_run["last_run_at"] = finished.isoformat()
        PayslipAutomationService._last_run["last_summary"] = summary.__dict__
        if result.errors:
            PayslipAutomationService._last_run["last_error"] = result.errors[0]["message"]
        else:
            PayslipAutomationService._last_run["last_success_at"] = finished.isoformat()
            PayslipAutomationService._last_run["last_error"] = None

        return summary.__dict__

    @staticmethod
    def status() -> dict:
        return {
            "enabled": settings.PAYSLIP_AUTO_ENABLED,
            "schedule": {
                "day_of_month": settings.PAYSLIP_AUTO_DAY,
                "hour_local": settings.PAYSLIP_AUTO_HOUR_LOCAL,
                "minute_local": settings.PAYSLIP_AUTO_MINUTE_LOCAL,
                "timezone": settings.GYM_TIMEZONE,
            },
            **PayslipAutomationService._last_run,
        }
