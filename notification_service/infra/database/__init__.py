"""Database session infrastructure."""

from notification_service.infra.database.session import (
    close_database,
    configure_session_factory,
    enable_sqlite_savepoints,
    get_async_session,
    get_engine,
    get_session_factory,
    init_database,
)

__all__ = [
    "close_database",
    "configure_session_factory",
    "enable_sqlite_savepoints",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
