"""
Shared fixtures: in-memory SQLite database, a private realtime hub per test,
and an HTTP client for the FastAPI app.
"""

import os

# Settings are read once at import time
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123"
os.environ["TELEGRAM_BOT_SECRET"] = "test-bot-secret"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)
os.environ.setdefault("ENVIRONMENT", "development")

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from blood_residence.core.config import get_settings
from blood_residence.core.database import get_session, make_session_factory
from blood_residence.main import app
from blood_residence.models import AppRole, Base, Profile
from blood_residence.realtime import RealtimeHub

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine, hub: RealtimeHub) -> async_sessionmaker[AsyncSession]:
    """Sessions publish their committed changes to the test's hub."""
    return make_session_factory(db_engine, hub)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_profile(session_factory):
    """Create and commit a profile, returning it."""

    async def _make_profile(
        username: str = "player",
        role: AppRole = AppRole.MEMBER,
        **fields,
    ) -> Profile:
        async with session_factory() as session:
            profile = Profile(id=uuid4(), username=username, role=role, **fields)
            session.add(profile)
            await session.commit()
            return profile

    return _make_profile


# =============================================================================
# AUTH
# =============================================================================


def make_access_token(user_id, expires_in: timedelta = timedelta(hours=1)) -> str:
    settings = get_settings()
    return jwt.encode(
        {
            "sub": str(user_id),
            "aud": settings.jwt_audience,
            "role": "authenticated",
            "exp": datetime.now(timezone.utc) + expires_in,
        },
        settings.supabase_jwt_secret,
        algorithm="HS256",
    )


@pytest.fixture
def auth_headers():
    def _auth_headers(user_id, expires_in: timedelta = timedelta(hours=1)) -> dict:
        return {"Authorization": f"Bearer {make_access_token(user_id, expires_in)}"}

    return _auth_headers


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
async def client(session_factory):
    async def _get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
    app.dependency_overrides.clear()
