import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["INTERNAL_API_TOKEN"] = "internal-test-token"  # must match tests.factories.INTERNAL_TOKEN
os.environ["RESEND_API_KEY"] = ""  # Never send real email from tests

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from referral_engine.auth.service import hash_password
from referral_engine.database import Base, get_db
from referral_engine.main import app
from referral_engine.models.enums import UserRole
from referral_engine.models.user import User
from referral_engine.services.program_settings import ReferralProgram

# Use SQLite for tests (in-memory)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed database for tests that need several independent sessions."""
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'referrals.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter storage between tests to avoid 429 errors
    from referral_engine.utils.rate_limit import limiter
    if hasattr(limiter, "_limiter") and hasattr(limiter._limiter, "_storage"):
        limiter._limiter._storage.reset()
    elif hasattr(limiter, "reset"):
        limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    user = User(
        email="admin@test.com",
        password_hash=hash_password("password123"),
        role=UserRole.ADMIN,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def staff_user(db: AsyncSession) -> User:
    user = User(
        email="staff@test.com",
        password_hash=hash_password("password123"),
        role=UserRole.STAFF,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


@pytest.fixture
def program() -> ReferralProgram:
    return ReferralProgram()


@pytest.fixture
def notifier() -> AsyncMock:
    sender = AsyncMock()
    sender.send_welcome.return_value = True
    sender.send_credit_earned.return_value = True
    return sender

