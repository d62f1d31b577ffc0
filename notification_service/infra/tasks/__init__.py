"""In-process scheduling of the notification background jobs."""

from notification_service.infra.tasks.scheduler import (
    get_job_status,
    scheduler,
    setup_scheduled_jobs,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "get_job_status",
    "scheduler",
    "setup_scheduled_jobs",
    "start_scheduler",
    "stop_scheduler",
]
