"""Async database engine and session management.

One engine per process, created on first use from ``DATABASE_URL``.
PostgreSQL (asyncpg) is the production target; SQLite (aiosqlite) is used for
local runs and the test suite, with foreign keys switched on per connection
so step and document rows cannot outlive their transaction.

Repositories never commit. The request that owns the session decides when
its work becomes durable (see ``api.deps.commit_and_dispatch``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from property_clearinghouse.config import Settings, get_settings
from property_clearinghouse.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.db_echo_sql, "pool_pre_ping": True}
    if make_url(settings.database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )
    return options


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = make_url(settings.database_url)
        _engine = create_async_engine(url, **_engine_options(settings))
        if url.get_backend_name() == "sqlite":
            event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        logger.info(
            "database.engine_created",
            url=url.render_as_string(hide_password=True),
            backend=url.get_backend_name(),
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session for a unit of work.

    Anything the caller left uncommitted is committed when the generator
    resumes; an exception rolls the whole unit back and propagates.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the engine and, in development, any missing tables."""
    from property_clearinghouse.infrastructure.database.orm_models import Base

    engine = get_engine()
    if not get_settings().is_development:
        logger.info("database.schema_unmanaged", reason="not in development mode")
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database.engine_disposed")
