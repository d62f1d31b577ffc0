"""APScheduler integration for the notification background jobs.

The scheduler runs in the same process and event loop as the API:
- process_due: sends scheduled notifications whose time has come
- retry_failed: re-attempts failed notifications with retry budget left
- cleanup: deletes notifications past the retention window

Every job runs with ``max_instances=1`` and ``coalesce=True``, so a tick
that fires while the previous run is still in progress is skipped.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import (
    AsyncIOScheduler,  # type: ignore[import-untyped]
)
from apscheduler.triggers.interval import (
    IntervalTrigger,  # type: ignore[import-untyped]
)

from notification_service.core.settings import get_notification_settings
from notification_service.features.notifications.jobs import (
    cleanup_old_notifications,
    process_scheduled_notifications,
    retry_failed_notifications,
)

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 60,
    },
)


def setup_scheduled_jobs() -> None:
    """Register the notification jobs with APScheduler."""
    settings = get_notification_settings()
    if not settings.scheduler_enabled:
        logger.warning("Notification scheduler disabled, skipping job scheduling")
        return

    logger.info("Setting up scheduled jobs with APScheduler")

    scheduler.add_job(
        func=process_scheduled_notifications,
        trigger=IntervalTrigger(seconds=settings.scheduler_poll_interval),
        id="process_due",
        name="Send due scheduled notifications",
        replace_existing=True,
    )

    scheduler.add_job(
        func=retry_failed_notifications,
        trigger=IntervalTrigger(seconds=settings.retry_interval),
        id="retry_failed",
        name="Retry failed notifications",
        replace_existing=True,
    )

    scheduler.add_job(
        func=cleanup_old_notifications,
        trigger=IntervalTrigger(hours=settings.cleanup_interval_hours),
        id="cleanup",
        name="Delete notifications past retention",
        replace_existing=True,
    )

    logger.info(f"Scheduled {len(scheduler.get_jobs())} jobs")


async def start_scheduler() -> None:
    """Start the APScheduler.

    Call during application startup after setup_scheduled_jobs().
    """
    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started with {len(scheduler.get_jobs())} jobs")
    else:
        logger.warning("APScheduler is already running")


async def stop_scheduler() -> None:
    """Stop the APScheduler and wait for running jobs to finish."""
    if scheduler.running:
        logger.info("Stopping APScheduler")
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")
    else:
        logger.debug("APScheduler is not running")


def get_job_status() -> list[dict]:
    """Get status of all scheduled jobs."""
    statuses = []
    for job in scheduler.get_jobs():
        # Pending jobs have no next_run_time until the scheduler starts
        next_run_time = getattr(job, "next_run_time", None)
        statuses.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run_time.isoformat() if next_run_time else None,
                "trigger": str(job.trigger),
            }
        )
    return statuses
