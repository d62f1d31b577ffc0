"""Application lifespan management.

Startup Order:
1. Core (logging) - always runs first
2. Database - verify connectivity and create missing tables
3. Delivery registry - live connections and heartbeat
4. Scheduler - scheduled sends, retries and retention

Shutdown Order: Reverse of startup
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from notification_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_websocket_settings,
)
from notification_service.features.realtime.registry import (
    start_delivery_registry,
    stop_delivery_registry,
)
from notification_service.infra.database import close_database, init_database
from notification_service.infra.logging import setup_logging
from notification_service.infra.logging import shutdown as shutdown_logging
from notification_service.infra.tasks import setup_scheduled_jobs, start_scheduler, stop_scheduler

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_registry_started = False
_scheduler_started = False


async def _startup_core() -> None:
    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={"version": get_app_settings().version, "api_prefix": get_app_settings().api_prefix},
    )


async def _startup_database() -> None:
    db = get_db_settings()
    try:
        await init_database()
    except ConnectionError:
        if db.startup_require_db:
            logger.exception("Database required but unavailable, failing startup")
            raise
        logger.warning("Database unavailable, continuing in degraded mode")


async def _startup_realtime() -> None:
    global _registry_started
    if not get_websocket_settings().enabled:
        return
    await start_delivery_registry()
    _registry_started = True


async def _startup_scheduler() -> None:
    global _scheduler_started
    if not get_notification_settings().scheduler_enabled:
        logger.info("Notification scheduler disabled")
        return
    setup_scheduled_jobs()
    await start_scheduler()
    _scheduler_started = True


async def _shutdown_scheduler() -> None:
    global _scheduler_started
    if _scheduler_started:
        await stop_scheduler()
        _scheduler_started = False


async def _shutdown_realtime() -> None:
    global _registry_started
    if _registry_started:
        await stop_delivery_registry()
        _registry_started = False


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start services in dependency order and stop them in reverse."""
    await _startup_core()
    await _startup_database()
    await _startup_realtime()
    await _startup_scheduler()

    logger.info("Application startup complete")

    yield

    logger.info("Application shutting down")
    await _shutdown_scheduler()
    await _shutdown_realtime()
    await close_database()
    logger.info("Application shutdown complete")
    shutdown_logging()
