"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from notification_service.core.settings import get_app_settings, get_websocket_settings
from notification_service.features.notifications.router import (
    preferences_router as notification_preferences_router,
)
from notification_service.features.notifications.router import router as notifications_router
from notification_service.features.notifications.router import (
    templates_router as notification_templates_router,
)
from notification_service.features.realtime.router import router as realtime_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from notification_service.core.settings.app import AppSettings
    from notification_service.core.settings.websocket import WebSocketSettings

logger = logging.getLogger(__name__)

observability_router = APIRouter(tags=["observability"])


@observability_router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


@observability_router.get("/health/live")
async def liveness() -> dict[str, str]:
    return {"status": "alive"}


def setup_routers(
    app: FastAPI,
    app_settings: AppSettings | None = None,
    websocket_settings: WebSocketSettings | None = None,
) -> None:
    """Register all feature routers with the application.

    Preference and template routers go first so their static paths are
    matched before the notification router's ``/{notification_id}``.
    """
    app_settings = app_settings or get_app_settings()
    websocket_settings = websocket_settings or get_websocket_settings()
    api_prefix = app_settings.api_prefix

    app.include_router(observability_router)

    app.include_router(notification_preferences_router, prefix=api_prefix)
    app.include_router(notification_templates_router, prefix=api_prefix)
    app.include_router(notifications_router, prefix=api_prefix)

    if websocket_settings.enabled:
        app.include_router(realtime_router)
        logger.info("Realtime router registered", extra={"path": "/ws/notifications"})

    logger.info("Routers configured", extra={"api_prefix": api_prefix})
