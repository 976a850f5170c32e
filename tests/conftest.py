import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pt-payroll-suite")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["GYM_TIMEZONE"] = "Asia/Singapore"

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ptpay.database import Base, get_db
from ptpay.main import app
from ptpay.models.enums import Role
from ptpay.models.user import User
from ptpay.services.change_feed import change_feed
import ptpay.models  # noqa: F401

from factories import make_user


@pytest.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )
    async with async_session() as session:
        yield session


@pytest.fixture(scope="function")
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_change_feed():
    change_feed._subscribers.clear()
    yield
    change_feed._subscribers.clear()


@pytest.fixture
async def admin(db_session) -> User:
    return await make_user(db_session, Role.ADMIN, "Admin User")


@pytest.fixture
async def coach(db_session) -> User:
    return await make_user(db_session, Role.COACH, "Coach Carter")


@pytest.fixture
async def member(db_session) -> User:
    return await make_user(db_session, Role.MEMBER, "Member Mia")
