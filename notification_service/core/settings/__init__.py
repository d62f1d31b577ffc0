"""Modular Pydantic Settings v2 configuration.

One settings class per concern, each with its own environment prefix:
APP_, DB_, LOG_, NOTIFY_, WS_ and AUTH_.

Import settings via cached loaders:
    from notification_service.core.settings import get_notification_settings
"""

from __future__ import annotations

from .loader import (
    clear_all_caches,
    get_app_settings,
    get_auth_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_websocket_settings,
)

__all__ = [
    "clear_all_caches",
    "get_app_settings",
    "get_auth_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_websocket_settings",
]
