"""Database engine and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notification_service.core.database import Base
from notification_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        db_settings = get_db_settings()
        _engine = create_async_engine(
            db_settings.get_sqlalchemy_url(),
            **db_settings.engine_kwargs(),
        )
        if db_settings.is_sqlite:
            enable_sqlite_savepoints(_engine)
    return _engine


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT scopes behave.

    The sqlite3 driver defers BEGIN on its own, which breaks nested
    transactions used by default promotion and preference upserts.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the process-wide engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


def configure_session_factory(factory: async_sessionmaker[AsyncSession] | None) -> None:
    """Swap the session factory (tests point it at an in-memory database)."""
    global _session_factory
    _session_factory = factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Example:
        async with get_async_session() as session:
            result = await session.execute(select(Notification))
    """
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database() -> None:
    """Verify connectivity and create missing tables.

    Raises:
        ConnectionError: If the database cannot be reached.
    """
    # Registers the notification tables on Base.metadata
    from notification_service.features.notifications import models  # noqa: F401

    engine = get_engine()
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.exception("Failed to initialize database", extra={"error": str(e)})
        msg = f"Unable to connect to database: {e}"
        raise ConnectionError(msg) from e

    logger.info("Database connection established successfully", extra={"url": engine.url.render_as_string()})


async def close_database() -> None:
    """Dispose of the engine during application shutdown."""
    global _engine, _session_factory
    if _engine is None:
        return
    logger.info("Closing database connection")
    try:
        await _engine.dispose()
        logger.info("Database connection closed successfully")
    except Exception as e:
        logger.exception("Error closing database connection", extra={"error": str(e)})
    finally:
        _engine = None
        _session_factory = None
