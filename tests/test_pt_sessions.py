from datetime import datetime, timedelta, timezone
import logging

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.core.exceptions import InvalidTransitionError, PermissionDeniedError, ValidationError
from ptpay.models.audit import AuditLog
from ptpay.models.enums import Role
from ptpay.models.notification import Notification, NotificationType
from ptpay.models.pt import PTSessionStatus, PTSessionType, VerificationState
from ptpay.services.change_feed import change_feed
from ptpay.services.notification_service import NotificationService
from ptpay.services.pt_session_service import PTSessionService, verification_state
from ptpay.services.timezone_service import as_utc
from factories import make_session, make_user

SLOT = datetime(2026, 3, 10, 2, 0, tzinfo=timezone.utc)
AFTER_SLOT = SLOT + timedelta(hours=2)


@pytest.mark.asyncio
async def test_mark_attended_sets_coach_verification(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    queue = change_feed.subscribe("pt_sessions", coach.id)

    updated = await PTSessionService.mark_attended(db_session, session.id, coach, now=AFTER_SLOT)

    assert updated.coach_verified is True
    assert updated.status == PTSessionStatus.SCHEDULED
    assert as_utc(updated.verification_date) == AFTER_SLOT
    assert verification_state(updated) == VerificationState.COACH_VERIFIED
    signal = queue.get_nowait()
    assert signal.table == "pt_sessions" and signal.coach_id == coach.id

    audit = (await db_session.execute(select(AuditLog).where(AuditLog.target_id == str(session.id)))).scalars().all()
    assert [entry.action for entry in audit] == ["PT_SESSION_COACH_VERIFIED"]


@pytest.mark.asyncio
async def test_mark_attended_future_session_logs_warning(db_session: AsyncSession, coach, member, caplog):
    session = await make_session(db_session, coach, member, SLOT)
    with caplog.at_level(logging.WARNING, logger="ptpay.services.pt_session_service"):
        await PTSessionService.mark_attended(db_session, session.id, coach, now=SLOT - timedelta(days=1))
    assert "before its scheduled time" in caplog.text
    assert session.coach_verified is True


@pytest.mark.asyncio
async def test_mark_attended_twice_is_rejected(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    await PTSessionService.mark_attended(db_session, session.id, coach, now=AFTER_SLOT)
    with pytest.raises(InvalidTransitionError):
        await PTSessionService.mark_attended(db_session, session.id, coach, now=AFTER_SLOT)


@pytest.mark.asyncio
async def test_other_coach_cannot_mark_attended(db_session: AsyncSession, coach, member):
    other = await make_user(db_session, Role.COACH, "Other Coach")
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(PermissionDeniedError):
        await PTSessionService.mark_attended(db_session, session.id, other, now=AFTER_SLOT)
    assert session.coach_verified is False


@pytest.mark.asyncio
async def test_admin_can_mark_attended_for_coach(db_session: AsyncSession, admin, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    updated = await PTSessionService.mark_attended(db_session, session.id, admin, now=AFTER_SLOT)
    assert updated.coach_verified is True


@pytest.mark.asyncio
async def test_undo_verification_before_member_verifies(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    await PTSessionService.mark_attended(db_session, session.id, coach, now=AFTER_SLOT)

    updated = await PTSessionService.undo_verification(db_session, session.id, coach)

    assert updated.coach_verified is False
    assert updated.verification_date is None
    assert verification_state(updated) == VerificationState.SCHEDULED


@pytest.mark.asyncio
async def test_undo_after_member_verified_fails_and_keeps_state(db_session: AsyncSession, coach, member):
    session = await make_session(
        db_session, coach, member, SLOT, coach_verified=True, member_verified=True, verification_date=AFTER_SLOT
    )

    with pytest.raises(InvalidTransitionError):
        await PTSessionService.undo_verification(db_session, session.id, coach)

    refreshed = await PTSessionService.get_session(db_session, session.id)
    assert refreshed.coach_verified is True
    assert refreshed.member_verified is True
    assert verification_state(refreshed) == VerificationState.BOTH_VERIFIED


@pytest.mark.asyncio
async def test_undo_without_verification_fails(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(InvalidTransitionError):
        await PTSessionService.undo_verification(db_session, session.id, coach)


@pytest.mark.asyncio
async def test_member_verify_requires_coach_verification(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(InvalidTransitionError):
        await PTSessionService.member_verify(db_session, session.id, member)

    await PTSessionService.mark_attended(db_session, session.id, coach, now=AFTER_SLOT)
    updated = await PTSessionService.member_verify(db_session, session.id, member)
    assert verification_state(updated) == VerificationState.BOTH_VERIFIED


@pytest.mark.asyncio
async def test_member_cannot_verify_someone_elses_session(db_session: AsyncSession, coach, member):
    stranger = await make_user(db_session, Role.MEMBER, "Stranger")
    session = await make_session(db_session, coach, member, SLOT, coach_verified=True)
    with pytest.raises(PermissionDeniedError):
        await PTSessionService.member_verify(db_session, session.id, stranger)


@pytest.mark.asyncio
async def test_cancel_notifies_admin_and_member(db_session: AsyncSession, admin, coach, member):
    session = await make_session(db_session, coach, member, SLOT)

    cancelled = await PTSessionService.cancel(db_session, session.id, "  Member is sick  ", coach)

    assert cancelled.status == PTSessionStatus.CANCELLED
    assert cancelled.cancelled_by == coach.id
    assert cancelled.cancellation_reason == "Member is sick"
    assert cancelled.cancelled_at is not None
    assert verification_state(cancelled) == VerificationState.CANCELLED

    stmt = select(Notification).where(Notification.notification_type == NotificationType.PT_CANCELLED)
    notifications = (await db_session.execute(stmt)).scalars().all()
    assert {n.user_id for n in notifications} == {admin.id, member.id}
    assert all(n.is_read is False for n in notifications)
    member_note = next(n for n in notifications if n.user_id == member.id)
    # 02:00 UTC is 10:00 in Singapore
    assert "10 Mar 2026 at 10:00" in member_note.message
    assert "Member is sick" in member_note.message


@pytest.mark.asyncio
async def test_cancel_prefers_master_admin(db_session: AsyncSession, admin, coach, member):
    master = await make_user(db_session, Role.MASTER_ADMIN, "Owner")
    session = await make_session(db_session, coach, member, SLOT)

    await PTSessionService.cancel(db_session, session.id, "Clash", coach)

    notifications = (await db_session.execute(select(Notification))).scalars().all()
    assert {n.user_id for n in notifications} == {master.id, member.id}


@pytest.mark.asyncio
async def test_cancel_without_admin_still_notifies_member(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    await PTSessionService.cancel(db_session, session.id, "Clash", coach)
    notifications = (await db_session.execute(select(Notification))).scalars().all()
    assert [n.user_id for n in notifications] == [member.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", ["", "   ", None])
async def test_cancel_requires_reason(db_session: AsyncSession, coach, member, reason):
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(ValidationError):
        await PTSessionService.cancel(db_session, session.id, reason, coach)
    assert session.status == PTSessionStatus.SCHEDULED


@pytest.mark.asyncio
async def test_cancel_after_verification_is_rejected(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT, coach_verified=True)
    with pytest.raises(InvalidTransitionError):
        await PTSessionService.cancel(db_session, session.id, "Too late", coach)


@pytest.mark.asyncio
async def test_edit_recomputes_commission_and_counts_edits(db_session: AsyncSession, admin, coach, member):
    session = await make_session(db_session, coach, member, SLOT, session_price=90.0)

    updated = await PTSessionService.edit(
        db_session,
        session.id,
        {"session_type": "buddy", "duration_minutes": 90, "notes": "  bring bands  "},
        coach,
    )
    assert updated.session_type == PTSessionType.BUDDY
    assert updated.commission_amount == 60.0
    assert updated.duration_minutes == 90
    assert updated.notes == "bring bands"
    assert updated.edit_count == 1
    assert updated.edited_by == coach.id
    assert updated.edited_at is not None

    updated = await PTSessionService.edit(db_session, session.id, {"notes": "   "}, coach)
    assert updated.notes is None
    assert updated.commission_amount == 60.0
    assert updated.edit_count == 2

    notes = (await db_session.execute(select(Notification).where(Notification.user_id == admin.id))).scalars().all()
    assert len(notes) == 2
    assert all(n.notification_type == NotificationType.BOOKING for n in notes)


@pytest.mark.asyncio
async def test_edit_naive_time_is_gym_local(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    updated = await PTSessionService.edit(db_session, session.id, {"scheduled_at": datetime(2026, 3, 12, 9, 30)}, coach)
    assert as_utc(updated.scheduled_at) == datetime(2026, 3, 12, 1, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
@pytest.mark.parametrize("duration", [10, 181, None, "an hour", float("inf")])
async def test_edit_rejects_out_of_range_duration(db_session: AsyncSession, coach, member, duration):
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(ValidationError):
        await PTSessionService.edit(db_session, session.id, {"duration_minutes": duration}, coach)


@pytest.mark.asyncio
async def test_edit_without_changes_is_rejected(db_session: AsyncSession, admin, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(ValidationError):
        await PTSessionService.edit(db_session, session.id, {}, coach)

    assert session.edit_count == 0
    assert session.edited_at is None
    assert (await db_session.execute(select(Notification))).scalars().all() == []


@pytest.mark.asyncio
async def test_edit_rejects_unknown_fields_and_non_members(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT)
    with pytest.raises(ValidationError):
        await PTSessionService.edit(db_session, session.id, {"payment_amount": 500}, coach)

    other_coach = await make_user(db_session, Role.COACH, "Not A Member")
    with pytest.raises(ValidationError):
        await PTSessionService.edit(db_session, session.id, {"member_id": other_coach.id}, coach)
    assert session.edit_count == 0


@pytest.mark.asyncio
async def test_edit_after_verification_is_rejected(db_session: AsyncSession, coach, member):
    session = await make_session(db_session, coach, member, SLOT, coach_verified=True)
    with pytest.raises(InvalidTransitionError):
        await PTSessionService.edit(db_session, session.id, {"notes": "x"}, coach)


@pytest.mark.asyncio
async def test_cancel_survives_notification_failure(db_session: AsyncSession, admin, coach, member, monkeypatch, caplog):
    session = await make_session(db_session, coach, member, SLOT)

    async def broken_dispatch(db, drafts):
        raise RuntimeError("push gateway down")

    monkeypatch.setattr(NotificationService, "dispatch", staticmethod(broken_dispatch))
    with caplog.at_level(logging.ERROR, logger="ptpay.services.notification_service"):
        cancelled = await PTSessionService.cancel(db_session, session.id, "Rain", coach)

    assert cancelled.status == PTSessionStatus.CANCELLED
    assert cancelled.cancellation_reason == "Rain"
    assert "Notification dispatch failed" in caplog.text
    assert (await db_session.execute(select(Notification))).scalars().all() == []
