"""Process-wide Postgres handles.

Two handles share one DSN. The SQLAlchemy async engine serves the readiness
check and migrations. The raw asyncpg pool serves every repository, the
change-event log and the dispatch queue.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from geodir.config import Settings, get_settings

logger = structlog.get_logger()

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None
_pool: asyncpg.Pool | None = None


def _engine_options(settings: Settings) -> dict[str, Any]:
    if settings.db_pool_mode == "null":
        # PgBouncer in transaction mode wants no client-side pooling.
        return {"poolclass": NullPool}
    return {
        "pool_size": max(1, settings.db_pool_size),
        "max_overflow": max(0, settings.db_pool_max_overflow),
        "pool_timeout": max(1, settings.db_pool_timeout_seconds),
        "pool_recycle": max(60, settings.db_pool_recycle_seconds),
        "pool_pre_ping": True,
    }


def asyncpg_dsn(settings: Settings) -> str:
    """The configured DSN without SQLAlchemy's `+asyncpg` driver marker."""
    return str(settings.database_url).replace("postgresql+asyncpg://", "postgresql://", 1)


async def init_db() -> None:
    global _engine, _sessions

    if _engine is not None:
        return
    settings = get_settings()
    _engine = create_async_engine(
        str(settings.database_url),
        echo=settings.log_level.upper() == "DEBUG",
        **_engine_options(settings),
    )
    _sessions = async_sessionmaker(bind=_engine, expire_on_commit=False, autoflush=False)
    logger.info("SQLAlchemy engine ready", pool_mode=settings.db_pool_mode)


async def close_db() -> None:
    global _engine, _sessions

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
    logger.info("SQLAlchemy engine disposed")


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    if _sessions is None:
        raise RuntimeError("init_db() has not been awaited")

    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_pool() -> asyncpg.Pool:
    """Return the shared asyncpg pool, creating it on first use."""
    global _pool

    if _pool is None:
        settings = get_settings()
        min_size = max(1, settings.db_raw_pool_min_size)
        _pool = await asyncpg.create_pool(
            asyncpg_dsn(settings),
            min_size=min_size,
            max_size=max(min_size, settings.db_raw_pool_max_size),
        )
        logger.info("asyncpg pool ready", min_size=min_size, max_size=_pool.get_max_size())
    return _pool


async def close_db_pool() -> None:
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("asyncpg pool closed")
