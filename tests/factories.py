from datetime import datetime, timezone
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ptpay.auth.security import create_access_token
from ptpay.models.enums import Role
from ptpay.models.payroll import CoachProfile, EmploymentType
from ptpay.models.pt import PTPackage, PTSession, PTSessionStatus, PTSessionType
from ptpay.models.user import User


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=user.email)}"}


async def make_user(db: AsyncSession, role: Role, name: str, *, is_active: bool = True) -> User:
    user = User(
        email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@gymclub.com",
        full_name=name,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    return user


async def make_profile(db: AsyncSession, coach: User, employment_type: EmploymentType, **rates) -> CoachProfile:
    profile = CoachProfile(user_id=coach.id, employment_type=employment_type, **rates)
    db.add(profile)
    await db.commit()
    return profile


async def make_session(
    db: AsyncSession,
    coach: User,
    member: User,
    scheduled_at: datetime,
    **fields,
) -> PTSession:
    fields.setdefault("status", PTSessionStatus.SCHEDULED)
    fields.setdefault("session_type", PTSessionType.SOLO_SINGLE)
    session = PTSession(
        coach_id=coach.id,
        member_id=member.id,
        scheduled_at=scheduled_at.astimezone(timezone.utc),
        duration_minutes=fields.pop("duration_minutes", 60),
        **fields,
    )
    db.add(session)
    await db.commit()
    return session


async def make_package(db: AsyncSession, member: User, total_sessions: int, sessions_used: int = 0) -> PTPackage:
    package = PTPackage(user_id=member.id, total_sessions=total_sessions, sessions_used=sessions_used)
    db.add(package)
    await db.commit()
    return package


