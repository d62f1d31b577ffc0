"""Process-wide settings singletons.

Each loader validates its settings class on first call and hands back the
same frozen instance afterwards. Tests that change the environment call
clear_all_caches() before the next lookup.
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .auth import AuthSettings
from .database import DatabaseSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .websocket import WebSocketSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Channel switches, providers, retry and retention policy."""
    return NotificationSettings()


@lru_cache(maxsize=1)
def get_websocket_settings() -> WebSocketSettings:
    return WebSocketSettings()


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    return AuthSettings()


_LOADERS = (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_websocket_settings,
    get_auth_settings,
)


def clear_all_caches() -> None:
    for loader in _LOADERS:
        loader.cache_clear()
