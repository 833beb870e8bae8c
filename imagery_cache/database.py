"""Async database engine and session management.

Uses SQLAlchemy 2.0 async with the asyncpg driver in production and
aiosqlite for local runs and tests. The engine is created once by the
process bootstrap (see ``main.lifespan``) and handed to the caches; the
caches never create or dispose it themselves.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from imagery_cache.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Failures that mean "the store is unreachable or the query failed"
STORAGE_ERRORS = (SQLAlchemyError, OSError)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def create_engine(config: Settings | None = None) -> AsyncEngine:
    """Build the process-wide async engine from settings."""
    config = config or default_settings
    url = make_url(config.database_url)

    kwargs: dict[str, Any] = {"echo": config.db_echo, "pool_pre_ping": True}
    if url.get_backend_name() != "sqlite":
        kwargs["pool_size"] = config.db_pool_size
        kwargs["max_overflow"] = config.db_max_overflow

    engine = create_async_engine(url, **kwargs)
    logger.info(
        "Database engine created | backend=%s | database=%s",
        url.get_backend_name(), url.database,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> bool:
    """Create tables if they don't exist. Returns True on success."""
    from imagery_cache.models import Base

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
        return True
    except Exception as e:
        logger.warning("Database unavailable, caches will miss until it returns | %s", str(e)[:200])
        return False


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections on shutdown."""
    await engine.dispose()
    logger.info("Database connections closed")


async def check_database(engine: AsyncEngine) -> bool:
    """Health probe — True if a trivial query round-trips."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed: %s", str(e)[:200])
        return False


def pool_status(engine: AsyncEngine) -> dict[str, Any]:
    """Connection pool diagnostics (counts are absent for non-queue pools)."""
    pool = engine.sync_engine.pool
    status: dict[str, Any] = {"pool": type(pool).__name__}
    for name in ("size", "checkedin", "checkedout", "overflow"):
        method = getattr(pool, name, None)
        if callable(method):
            status[name] = method()
    return status


def upsert(
    session: AsyncSession,
    model: type,
    values: Mapping[str, Any],
    conflict_column: str,
    overrides: Mapping[str, Any] | None = None,
):
    """Single-statement INSERT ... ON CONFLICT DO UPDATE for *model*.

    Every inserted column except the primary key, the conflict column and
    ``created_at`` is replaced from the incoming row; *overrides* supplies
    explicit values for the update branch (e.g. ``hit_count=0``).
    """
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'") from None

    stmt = insert(model).values(**values)
    preserved = {"id", conflict_column, "created_at"}
    set_ = {name: stmt.excluded[name] for name in values if name not in preserved}
    set_.update(overrides or {})
    return stmt.on_conflict_do_update(index_elements=[conflict_column], set_=set_)
