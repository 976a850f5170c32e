from typing import Annotated
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.auth import dependencies
from ptpay.core.responses import StandardResponse
from ptpay.database import get_db
from ptpay.models.enums import ADMIN_ROLES
from ptpay.models.user import User
from ptpay.services.earnings_service import EarningsService
from ptpay.services.timezone_service import now_in_gym_tz

router = APIRouter()


def _target_coach(current_user: User, coach_id: uuid.UUID | None) -> uuid.UUID:
    if coach_id is None or coach_id == current_user.id:
        return current_user.id
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Cannot view other coach's earnings")
    return coach_id


@router.get("/weekly", response_model=StandardResponse)
async def weekly_earnings(
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
    coach_id: uuid.UUID | None = Query(default=None),
):
    target = _target_coach(current_user, coach_id)
    return StandardResponse(data=await EarningsService.weekly_for_coach(db, target))


@router.get("/month-to-date", response_model=StandardResponse)
async def month_to_date(
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
    coach_id: uuid.UUID | None = Query(default=None),
):
    target = _target_coach(current_user, coach_id)
    return StandardResponse(data=await EarningsService.month_to_date(db, target))


@router.get("/year-to-date", response_model=StandardResponse)
async def year_to_date(
    current_user: Annotated[User, Depends(dependencies.get_current_coach)],
    db: Annotated[AsyncSession, Depends(get_db)],
    coach_id: uuid.UUID | None = Query(default=None),
    year: int | None = Query(default=None, ge=2000, le=2100),
):
    target = _target_coach(current_user, coach_id)
    year = year or now_in_gym_tz().year
    return StandardResponse(data=await EarningsService.year_to_date(db, target, year))
