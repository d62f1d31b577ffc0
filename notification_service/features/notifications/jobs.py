"""Background jobs for scheduled sends, retries and retention.

Each job opens its own sessions through the orchestrator, records a
run metric and returns a structured summary. A job never raises into the
scheduler; failures are logged and counted.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Any

from notification_service.features.notifications.metrics import notification_job_runs_total
from notification_service.features.notifications.service import get_notification_service
from notification_service.infra.logging import clear_log_context, set_log_context

logger = logging.getLogger(__name__)


async def process_scheduled_notifications() -> dict[str, Any]:
    """Send every scheduled notification that has come due.

    Scheduled: every ``NOTIFY_SCHEDULER_POLL_INTERVAL`` seconds.
    """
    started_at = datetime.now(UTC).isoformat()
    set_log_context(job="process_due")
    try:
        result = await get_notification_service().process_due()
    except Exception:
        logger.exception("Scheduled notification processing failed")
        notification_job_runs_total.labels(job="process_due", status="error").inc()
        return {"status": "error", "started_at": started_at}
    finally:
        clear_log_context()

    notification_job_runs_total.labels(job="process_due", status="success").inc()
    return {
        "status": "success",
        "processed": result.processed,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "started_at": started_at,
    }


async def retry_failed_notifications() -> dict[str, Any]:
    """Re-attempt failed notifications within the retry budget.

    Scheduled: every ``NOTIFY_RETRY_INTERVAL`` seconds.
    """
    started_at = datetime.now(UTC).isoformat()
    set_log_context(job="retry_failed")
    try:
        result = await get_notification_service().retry_failed()
    except Exception:
        logger.exception("Failed notification retry failed")
        notification_job_runs_total.labels(job="retry", status="error").inc()
        return {"status": "error", "started_at": started_at}
    finally:
        clear_log_context()

    notification_job_runs_total.labels(job="retry", status="success").inc()
    return {
        "status": "success",
        "processed": result.processed,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "started_at": started_at,
    }


async def cleanup_old_notifications() -> dict[str, Any]:
    """Delete notifications past the retention window.

    Scheduled: every ``NOTIFY_CLEANUP_INTERVAL_HOURS`` hours.
    """
    started_at = datetime.now(UTC).isoformat()
    set_log_context(job="cleanup")
    try:
        deleted = await get_notification_service().cleanup_old()
    except Exception:
        logger.exception("Notification cleanup failed")
        notification_job_runs_total.labels(job="cleanup", status="error").inc()
        return {"status": "error", "started_at": started_at}
    finally:
        clear_log_context()

    notification_job_runs_total.labels(job="cleanup", status="success").inc()
    logger.info("Notification cleanup completed", extra={"deleted_count": deleted})
    return {"status": "success", "deleted_count": deleted, "started_at": started_at}
