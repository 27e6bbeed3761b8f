"""Database engine and session management.

Every request runs in one transaction on its own session: commit when the
handler returns, roll back on any exception. Row changes captured during
the session reach realtime subscribers only after the commit.
"""

from collections.abc import AsyncGenerator
import logging
import ssl

import asyncpg
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..realtime.capture import CAPTURE_KEY, HUB_KEY
from ..realtime.hub import RealtimeHub
from .config import Settings, get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _uses_hosted_pooler(settings: Settings) -> bool:
    db_url = str(settings.database_url)
    return (
        settings.environment == "production"
        or settings.supabase_url is not None
        or "supabase" in db_url
        or "pooler" in db_url
    )


def build_connect_args(settings: Settings) -> dict:
    """asyncpg connect args; the hosted project sits behind TLS and pgbouncer."""
    if not _uses_hosted_pooler(settings):
        return {}

    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    logger.info("Connecting to the hosted database over TLS without statement caching")
    return {
        "ssl": ssl_context,
        # pgbouncer in transaction mode cannot hold prepared statements
        "prepared_statement_cache_size": 0,
        "statement_cache_size": 0,
    }


def make_session_factory(
    bind: AsyncEngine,
    hub: RealtimeHub | None = None,
    capture: bool = True,
) -> async_sessionmaker[AsyncSession]:
    """Session factory whose committed changes go to `hub` (the process hub by default).

    With `capture=False` the sessions publish nothing themselves.
    """
    info: dict = {CAPTURE_KEY: capture}
    if hub is not None:
        info[HUB_KEY] = hub
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        info=info,
    )


engine = create_async_engine(
    settings.database_url_async,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
    connect_args=build_connect_args(settings),
)

async_session_factory = make_session_factory(
    engine,
    capture=settings.realtime_source == "session",
)


async def connect_listener() -> asyncpg.Connection:
    """Dedicated connection for the change listener, outside the pool."""
    dsn = str(settings.realtime_database_url or settings.database_url)
    connect_args = build_connect_args(settings)
    return await asyncpg.connect(
        dsn,
        ssl=connect_args.get("ssl"),
        statement_cache_size=0,
    )


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides one transactional session per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Request failed, transaction rolled back: {e}")
            raise


async def init_db() -> None:
    """Create missing tables. The hosted project owns the schema in production."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
