from typing import Annotated
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ptpay.config import settings
from ptpay.database import get_db
from ptpay.auth import schemas, security
from ptpay.models.user import User
from ptpay.core.responses import StandardResponse

router = APIRouter()


@router.post("/login", response_model=StandardResponse[schemas.Token])
async def login(
    login_data: schemas.LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not user.is_active or not security.verify_password(login_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = security.create_access_token(
        subject=user.email,
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return StandardResponse(
        data=schemas.Token(access_token=access_token, token_type="bearer"),
        message="Login Successful"
    )
