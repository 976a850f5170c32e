from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
from typing import Any
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ptpay.core.exceptions import (
    ConsistencyWarning,
    InvalidTransitionError,
    PartialBatchError,
    PermissionDeniedError,
    PTPayrollError,
    ValidationError,
)
from ptpay.models.enums import ADMIN_ROLES
from ptpay.models.pt import PackageStatus, PTPackage, PTSession, PTSessionStatus
from ptpay.models.user import User
from ptpay.services.audit_service import AuditService
from ptpay.services.change_feed import change_feed
from ptpay.services.commission import PayrollRules, _round_money, resolve_commission
from ptpay.services.pt_session_service import PTSessionService

logger = logging.getLogger(__name__)


@dataclass
class ApprovalOutcome:
    session: PTSession
    amount: float
    warning: ConsistencyWarning | None = None


@dataclass
class BulkApprovalResult:
    approved: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_amount(self) -> float:
        return _round_money(sum(item["amount"] for item in self.approved))

    def as_dict(self) -> dict[str, Any]:
        return {
            "approved": len(self.approved),
            "total_amount": self.total_amount,
            "sessions": self.approved,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    def raise_for_errors(self) -> None:
        if self.errors:
            raise PartialBatchError(
                f"{len(self.errors)} of {len(self.errors) + len(self.approved)} sessions failed approval",
                self.errors,
            )


def _awaiting_payment_filter():
    return (
        PTSession.coach_verified.is_(True),
        PTSession.member_verified.is_(True),
        PTSession.payment_approved.is_(False),
        PTSession.cancelled_at.is_(None),
    )


class PaymentApprovalService:
    @staticmethod
    async def _consume_package_session(db: AsyncSession, session: PTSession) -> ConsistencyWarning | None:
        """Count one approved session against its package.

        Returns a warning instead of raising: the payment stays approved and
        the package is left for the reconciliation report.
        """
        package = await db.get(PTPackage, session.package_id)
        if package is None:
            return ConsistencyWarning(session.id, session.package_id, "package not found")
        if package.sessions_used >= package.total_sessions:
            return ConsistencyWarning(session.id, package.id, "package has no sessions remaining")

        package.sessions_used += 1
        if package.sessions_used >= package.total_sessions:
            package.status = PackageStatus.COMPLETED
        return None

    @staticmethod
    async def approve_payment(
        db: AsyncSession,
        session_id: uuid.UUID,
        actor: User,
        *,
        amount: float | None = None,
        rules: PayrollRules | None = None,
    ) -> ApprovalOutcome:
        if actor.role not in ADMIN_ROLES:
            raise PermissionDeniedError("Only admins can approve PT payments")
        if amount is not None and (not math.isfinite(amount) or amount <= 0):
            raise ValidationError("Please enter a valid payment amount")

        session = await PTSessionService.get_session(db, session_id)
        if session.cancelled_at is not None or session.status == PTSessionStatus.CANCELLED:
            raise InvalidTransitionError("Cancelled sessions cannot be paid")
        if session.payment_approved:
            raise InvalidTransitionError("Payment already approved")
        if not (session.coach_verified and session.member_verified):
            raise InvalidTransitionError("Session must be verified by coach and member before payment")

        if amount is None:
            amount = resolve_commission(session, rules)
            if not math.isfinite(amount):
                raise ValidationError("Session price or commission is not a valid amount")
        paid_amount = _round_money(amount)
        session.payment_approved = True
        session.approved_by = actor.id
        session.approved_at = datetime.now(timezone.utc)
        session.payment_amount = paid_amount

        warning = None
        if session.package_id:
            warning = await PaymentApprovalService._consume_package_session(db, session)
            if warning:
                logger.warning("Payment approved with package inconsistency: %s", warning)

        await AuditService.log_action(
            db,
            actor.id,
            "APPROVE_PT_PAYMENT",
            str(session.id),
            f"amount={paid_amount}, package={session.package_id}",
        )
        # Session and package are written together.
        await db.commit()
        change_feed.publish("pt_sessions", session.coach_id)
        return ApprovalOutcome(session=session, amount=paid_amount, warning=warning)

    @staticmethod
    async def bulk_approve_payment(
        db: AsyncSession,
        actor: User,
        *,
        session_ids: list[uuid.UUID] | None = None,
        rules: PayrollRules | None = None,
    ) -> BulkApprovalResult:
        if actor.role not in ADMIN_ROLES:
            raise PermissionDeniedError("Only admins can approve PT payments")
        if session_ids is None:
            stmt = select(PTSession.id).where(*_awaiting_payment_filter()).order_by(PTSession.scheduled_at)
            session_ids = list((await db.execute(stmt)).scalars().all())

        rules = rules or PayrollRules.from_settings()
        result = BulkApprovalResult()
        for session_id in session_ids:
            try:
                outcome = await PaymentApprovalService.approve_payment(db, session_id, actor, rules=rules)
            except PTPayrollError as exc:
                result.errors.append({"session_id": str(session_id), "message": exc.message})
                continue
            except Exception as exc:
                await db.rollback()
                if actor in db:
                    # Rollback expired the actor loaded in this session.
                    await db.refresh(actor)
                logger.exception("Bulk approval failed for session %s", session_id)
                result.errors.append({"session_id": str(session_id), "message": str(exc)})
                continue

            result.approved.append(
                {
                    "session_id": str(outcome.session.id),
                    "coach_id": str(outcome.session.coach_id),
                    "amount": outcome.amount,
                }
            )
            if outcome.warning:
                result.warnings.append(outcome.warning.as_dict())

        logger.info(
            "Bulk PT payment approval: approved=%s errors=%s warnings=%s total=%s",
            len(result.approved),
            len(result.errors),
            len(result.warnings),
            result.total_amount,
        )
        return result

    @staticmethod
    async def list_pending_approvals(db: AsyncSession, *, rules: PayrollRules | None = None) -> list[dict[str, Any]]:
        rules = rules or PayrollRules.from_settings()
        coach = aliased(User)
        member = aliased(User)
        stmt = (
            select(PTSession, coach, member, PTPackage)
            .join(coach, coach.id == PTSession.coach_id)
            .join(member, member.id == PTSession.member_id)
            .outerjoin(PTPackage, PTPackage.id == PTSession.package_id)
            .where(*_awaiting_payment_filter())
            .order_by(PTSession.scheduled_at)
        )
        rows = (await db.execute(stmt)).all()
        return [
            {
                "session_id": str(session.id),
                "session_date": session.scheduled_at.isoformat(),
                "coach_id": str(session.coach_id),
                "coach_name": coach_user.full_name or "Unknown",
                "member_id": str(session.member_id),
                "member_name": member_user.full_name or "Unknown",
                "session_price": session.session_price if session.session_price is not None else rules.default_session_price,
                "coach_commission": _round_money(resolve_commission(session, rules)),
                "package_id": str(session.package_id) if session.package_id else None,
                "package_sessions_remaining": package.sessions_remaining if package else 0,
            }
            for session, coach_user, member_user, package in rows
        ]

    @staticmethod
    async def reconcile_package_usage(db: AsyncSession) -> list[dict[str, Any]]:
        """Packages whose stored usage differs from their approved sessions.

        Read-only: mismatches are reported for an admin to resolve.
        """
        approved_counts = (
            select(PTSession.package_id, func.count(PTSession.id).label("approved"))
            .where(PTSession.package_id.is_not(None), PTSession.payment_approved.is_(True))
            .group_by(PTSession.package_id)
            .subquery()
        )
        stmt = (
            select(PTPackage, func.coalesce(approved_counts.c.approved, 0))
            .outerjoin(approved_counts, approved_counts.c.package_id == PTPackage.id)
        )
        rows = (await db.execute(stmt)).all()

        mismatches = []
        for package, approved in rows:
            if int(approved) != package.sessions_used:
                mismatches.append(
                    {
                        "package_id": str(package.id),
                        "user_id": str(package.user_id),
                        "sessions_used": package.sessions_used,
                        "approved_sessions": int(approved),
                        "total_sessions": package.total_sessions,
                    }
                )
        if mismatches:
            logger.warning("Package usage reconciliation found %s mismatches", len(mismatches))
        return mismatches
