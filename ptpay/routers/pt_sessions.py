from datetime import datetime
from typing import Annotated, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.auth import dependencies
from ptpay.core.responses import StandardResponse
from ptpay.database import get_db
from ptpay.models.enums import ADMIN_ROLES
from ptpay.models.pt import PTSession, PTSessionType
from ptpay.models.user import User
from ptpay.services.commission import resolve_commission
from ptpay.services.pt_session_service import PTSessionService, verification_state
from ptpay.services.timezone_service import as_utc

router = APIRouter()


class CancelRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class SessionEdit(BaseModel):
    scheduled_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    session_type: Optional[PTSessionType] = None
    member_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def serialize_session(session: PTSession) -> dict:
    return {
        "id": str(session.id),
        "coach_id": str(session.coach_id),
        "member_id": str(session.member_id),
        "scheduled_at": _iso(session.scheduled_at),
        "duration_minutes": session.duration_minutes,
        "status": session.status.value,
        "session_type": session.session_type.value,
        "verification_state": verification_state(session).value,
        "coach_verified": session.coach_verified,
        "member_verified": session.member_verified,
        "payment_approved": session.payment_approved,
        "payment_amount": session.payment_amount,
        "commission": resolve_commission(session),
        "package_id": str(session.package_id) if session.package_id else None,
        "cancellation_reason": session.cancellation_reason,
        "cancelled_at": _iso(session.cancelled_at),
        "edit_count": session.edit_count,
        "notes": session.notes,
    }


@router.get("/", response_model=StandardResponse)
async def list_sessions(
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
    coach_id: uuid.UUID | None = Query(default=None),
):
    if coach_id is None:
        coach_id = current_user.id
    elif coach_id != current_user.id and current_user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Cannot view other coach's sessions")

    sessions = await PTSessionService.list_for_coach(db, coach_id)
    return StandardResponse(data=[serialize_session(s) for s in sessions])


@router.post("/{session_id}/attend", response_model=StandardResponse)
async def mark_attended(
    session_id: uuid.UUID,
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    session = await PTSessionService.mark_attended(db, session_id, current_user)
    return StandardResponse(message="Session marked as attended", data=serialize_session(session))


@router.post("/{session_id}/undo-verification", response_model=StandardResponse)
async def undo_verification(
    session_id: uuid.UUID,
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    session = await PTSessionService.undo_verification(db, session_id, current_user)
    return StandardResponse(message="Verification undone", data=serialize_session(session))


@router.post("/{session_id}/member-verify", response_model=StandardResponse)
async def member_verify(
    session_id: uuid.UUID,
    current_user: Annotated[User, Depends(dependencies.get_current_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    session = await PTSessionService.member_verify(db, session_id, current_user)
    return StandardResponse(message="Session verified", data=serialize_session(session))


@router.post("/{session_id}/cancel", response_model=StandardResponse)
async def cancel_session(
    session_id: uuid.UUID,
    request: CancelRequest,
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    session = await PTSessionService.cancel(db, session_id, request.reason, current_user)
    return StandardResponse(message="Session cancelled", data=serialize_session(session))


@router.patch("/{session_id}", response_model=StandardResponse)
async def edit_session(
    session_id: uuid.UUID,
    request: SessionEdit,
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    changes = request.model_dump(exclude_unset=True)
    session = await PTSessionService.edit(db, session_id, changes, current_user)
    return StandardResponse(message="Session updated", data=serialize_session(session))
