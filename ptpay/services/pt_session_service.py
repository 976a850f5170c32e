from datetime import datetime, timezone
import logging
from typing import Any
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.core.exceptions import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from ptpay.models.enums import ADMIN_ROLES, Role
from ptpay.models.notification import NotificationType
from ptpay.models.pt import PTSession, PTSessionStatus, PTSessionType, VerificationState
from ptpay.models.user import User
from ptpay.services.audit_service import AuditService
from ptpay.services.change_feed import change_feed
from ptpay.services.commission import PayrollRules
from ptpay.services.notification_service import NotificationDraft, NotificationService
from ptpay.services.timezone_service import as_utc, get_gym_timezone

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"scheduled_at", "duration_minutes", "session_type", "member_id", "notes"}
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 180


def verification_state(session: PTSession) -> VerificationState:
    if session.cancelled_at is not None or session.status == PTSessionStatus.CANCELLED:
        return VerificationState.CANCELLED
    if session.payment_approved:
        return VerificationState.PAYMENT_APPROVED
    if session.coach_verified and session.member_verified:
        return VerificationState.BOTH_VERIFIED
    if session.coach_verified:
        return VerificationState.COACH_VERIFIED
    return VerificationState.SCHEDULED


def is_open_for_changes(session: PTSession) -> bool:
    """Edit and cancel are only legal before the coach has verified."""
    return (
        session.status == PTSessionStatus.SCHEDULED
        and session.cancelled_at is None
        and not session.coach_verified
    )


def _format_slot(value: datetime) -> tuple[str, str]:
    local = as_utc(value).astimezone(get_gym_timezone())
    return local.strftime("%d %b %Y"), local.strftime("%H:%M")


def _is_admin(user: User) -> bool:
    return user.role in ADMIN_ROLES


class PTSessionService:
    @staticmethod
    async def get_session(db: AsyncSession, session_id: uuid.UUID) -> PTSession:
        result = await db.execute(select(PTSession).where(PTSession.id == session_id))
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("PT session not found")
        return session

    @staticmethod
    def _ensure_coach_or_admin(session: PTSession, actor: User) -> None:
        if _is_admin(actor):
            return
        if actor.role != Role.COACH or actor.id != session.coach_id:
            raise PermissionDeniedError("Only the session's coach can do this")

    @staticmethod
    async def _commit_and_signal(db: AsyncSession, session: PTSession) -> None:
        await db.commit()
        change_feed.publish("pt_sessions", session.coach_id)

    @staticmethod
    async def list_for_coach(db: AsyncSession, coach_id: uuid.UUID) -> list[PTSession]:
        stmt = select(PTSession).where(PTSession.coach_id == coach_id).order_by(PTSession.scheduled_at)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def mark_attended(
        db: AsyncSession,
        session_id: uuid.UUID,
        actor: User,
        *,
        now: datetime | None = None,
    ) -> PTSession:
        session = await PTSessionService.get_session(db, session_id)
        PTSessionService._ensure_coach_or_admin(session, actor)
        if not is_open_for_changes(session):
            raise InvalidTransitionError("Session cannot be marked attended in its current state")

        now = now or datetime.now(timezone.utc)
        if as_utc(session.scheduled_at) > now:
            logger.warning("Session %s marked attended before its scheduled time", session.id)

        # Status stays scheduled; progress lives in the verification flags.
        session.coach_verified = True
        session.verification_date = now
        await AuditService.log_action(db, actor.id, "PT_SESSION_COACH_VERIFIED", str(session.id))
        await PTSessionService._commit_and_signal(db, session)
        return session

    @staticmethod
    async def undo_verification(db: AsyncSession, session_id: uuid.UUID, actor: User) -> PTSession:
        session = await PTSessionService.get_session(db, session_id)
        PTSessionService._ensure_coach_or_admin(session, actor)
        if not session.coach_verified:
            raise InvalidTransitionError("Session has not been verified by the coach")
        if session.member_verified or session.payment_approved:
            raise InvalidTransitionError("Cannot undo after the member has verified the session")

        session.coach_verified = False
        session.verification_date = None
        await AuditService.log_action(db, actor.id, "PT_SESSION_VERIFICATION_UNDONE", str(session.id))
        await PTSessionService._commit_and_signal(db, session)
        return session

    @staticmethod
    async def member_verify(db: AsyncSession, session_id: uuid.UUID, actor: User) -> PTSession:
        session = await PTSessionService.get_session(db, session_id)
        if not _is_admin(actor) and actor.id != session.member_id:
            raise PermissionDeniedError("Only the session's member can verify it")
        if session.cancelled_at is not None or session.status == PTSessionStatus.CANCELLED:
            raise InvalidTransitionError("Session is cancelled")
        if not session.coach_verified:
            raise InvalidTransitionError("Coach has not verified the session yet")
        if session.member_verified:
            raise InvalidTransitionError("Session already verified by the member")

        session.member_verified = True
        await AuditService.log_action(db, actor.id, "PT_SESSION_MEMBER_VERIFIED", str(session.id))
        await PTSessionService._commit_and_signal(db, session)
        return session

    @staticmethod
    async def cancel(
        db: AsyncSession,
        session_id: uuid.UUID,
        reason: str,
        actor: User,
    ) -> PTSession:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Please provide a reason for cancellation")

        session = await PTSessionService.get_session(db, session_id)
        PTSessionService._ensure_coach_or_admin(session, actor)
        if not is_open_for_changes(session):
            raise InvalidTransitionError("Only unverified scheduled sessions can be cancelled")

        session.status = PTSessionStatus.CANCELLED
        session.cancelled_by = actor.id
        session.cancellation_reason = reason
        session.cancelled_at = datetime.now(timezone.utc)
        await AuditService.log_action(db, actor.id, "PT_SESSION_CANCELLED", str(session.id), f"reason={reason}")
        await PTSessionService._commit_and_signal(db, session)

        member = await db.get(User, session.member_id)
        member_name = member.full_name if member and member.full_name else "member"
        day, time = _format_slot(session.scheduled_at)
        drafts = [
            NotificationDraft(
                user_id=session.member_id,
                title="PT Session Cancelled",
                message=f"Your PT session on {day} at {time} has been cancelled. Reason: {reason}",
                notification_type=NotificationType.PT_CANCELLED,
            )
        ]
        admin_id = await NotificationService.get_admin_recipient(db)
        if admin_id:
            drafts.insert(
                0,
                NotificationDraft(
                    user_id=admin_id,
                    title="PT Session Cancelled",
                    message=(
                        f"{actor.full_name or 'Coach'} cancelled session with {member_name} "
                        f"on {day} at {time}. Reason: {reason}"
                    ),
                    notification_type=NotificationType.PT_CANCELLED,
                ),
            )
        else:
            logger.warning("No admin found to notify about cancelled session %s", session.id)
        if not await NotificationService.dispatch_best_effort(db, drafts, reason="pt_cancelled"):
            # The failed dispatch rolled back and expired the committed row.
            await db.refresh(session)
        return session

    @staticmethod
    async def _validate_changes(db: AsyncSession, changes: dict[str, Any]) -> dict[str, Any]:
        """Check every edited field before any of them is applied."""
        updates: dict[str, Any] = {}

        if "duration_minutes" in changes:
            try:
                duration = int(changes["duration_minutes"])
            except (TypeError, ValueError, OverflowError) as exc:
                raise ValidationError("Duration must be a whole number of minutes") from exc
            if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
                raise ValidationError(
                    f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
                )
            updates["duration_minutes"] = duration

        if "scheduled_at" in changes:
            scheduled_at = changes["scheduled_at"]
            if not isinstance(scheduled_at, datetime):
                raise ValidationError("Please enter date and time")
            if scheduled_at.tzinfo is None:
                scheduled_at = scheduled_at.replace(tzinfo=get_gym_timezone())
            updates["scheduled_at"] = scheduled_at.astimezone(timezone.utc)

        if "member_id" in changes:
            member = await db.get(User, changes["member_id"]) if changes["member_id"] else None
            if not member or member.role != Role.MEMBER:
                raise ValidationError("Please select a member")
            updates["member_id"] = member.id

        if "session_type" in changes:
            try:
                updates["session_type"] = PTSessionType(changes["session_type"])
            except ValueError as exc:
                raise ValidationError("Unknown session type") from exc

        if "notes" in changes:
            notes = (changes["notes"] or "").strip()
            updates["notes"] = notes or None

        return updates

    @staticmethod
    async def edit(
        db: AsyncSession,
        session_id: uuid.UUID,
        changes: dict[str, Any],
        actor: User,
        *,
        rules: PayrollRules | None = None,
    ) -> PTSession:
        if not changes:
            raise ValidationError("No changes provided")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        session = await PTSessionService.get_session(db, session_id)
        PTSessionService._ensure_coach_or_admin(session, actor)
        if not is_open_for_changes(session):
            raise InvalidTransitionError("Only unverified scheduled sessions can be edited")

        rules = rules or PayrollRules.from_settings()
        updates = await PTSessionService._validate_changes(db, changes)
        for field_name, value in updates.items():
            setattr(session, field_name, value)

        session.commission_amount = rules.edit_commission_for(session.session_type)
        session.edited_by = actor.id
        session.edited_at = datetime.now(timezone.utc)
        session.edit_count = (session.edit_count or 0) + 1

        await AuditService.log_action(
            db,
            actor.id,
            "PT_SESSION_EDITED",
            str(session.id),
            f"fields={','.join(sorted(changes))}, edit_count={session.edit_count}",
        )
        await PTSessionService._commit_and_signal(db, session)

        admin_id = await NotificationService.get_admin_recipient(db)
        if admin_id:
            member = await db.get(User, session.member_id)
            day, time = _format_slot(session.scheduled_at)
            delivered = await NotificationService.dispatch_best_effort(
                db,
                [
                    NotificationDraft(
                        user_id=admin_id,
                        title="PT Session Updated",
                        message=(
                            f"{actor.full_name or 'Coach'} edited session with "
                            f"{member.full_name if member and member.full_name else 'Unknown Member'} - {day} at {time}"
                        ),
                        notification_type=NotificationType.BOOKING,
                    )
                ],
                reason="pt_edited",
            )
            if not delivered:
                await db.refresh(session)
        return session
