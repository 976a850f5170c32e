from typing import Annotated, List
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ptpay.config import settings
from ptpay.database import get_db
from ptpay.models.user import User
from ptpay.auth.schemas import TokenPayload
from ptpay.models.enums import Role

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


def _coerce_role(value: Role | str) -> Role:
    return value if isinstance(value, Role) else Role(value)

async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        email = payload.get("sub")
        token_type = payload.get("type")
        if email is None or token_type != "access":
            raise credentials_exception
        token_data = TokenPayload(sub=email, type=token_type)
    except JWTError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.email == token_data.sub))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exception
    user.role = _coerce_role(user.role)
    return user

async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)]
) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user

class RoleChecker:
    def __init__(self, allowed_roles: List[Role]):
        self.allowed_roles = allowed_roles

    def __call__(self, user: Annotated[User, Depends(get_current_active_user)]):
        user.role = _coerce_role(user.role)
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted"
            )
        return user

# Master admins can do everything admins can.
get_current_admin = RoleChecker([Role.MASTER_ADMIN, Role.ADMIN])
get_current_coach = RoleChecker([Role.MASTER_ADMIN, Role.ADMIN, Role.COACH])
get_current_member = RoleChecker([Role.MASTER_ADMIN, Role.ADMIN, Role.MEMBER])
