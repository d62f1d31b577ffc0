"""Tests for background jobs and their scheduling."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from notification_service.core.settings import clear_all_caches
from notification_service.features.notifications import jobs
from notification_service.features.notifications.service import JobResult
from notification_service.infra.logging import get_log_context
from notification_service.infra.tasks import get_job_status, scheduler, setup_scheduled_jobs


@pytest.fixture
def mock_service(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    service = MagicMock()
    service.process_due = AsyncMock(return_value=JobResult(processed=3, succeeded=2, failed=1))
    service.retry_failed = AsyncMock(return_value=JobResult(processed=1, succeeded=1, failed=0))
    service.cleanup_old = AsyncMock(return_value=7)
    monkeypatch.setattr(jobs, "get_notification_service", lambda: service)
    return service


@pytest.fixture
def clean_scheduler():
    scheduler.remove_all_jobs()
    yield scheduler
    scheduler.remove_all_jobs()


@pytest.mark.asyncio
async def test_process_scheduled_notifications(mock_service: MagicMock) -> None:
    result = await jobs.process_scheduled_notifications()

    assert result["status"] == "success"
    assert (result["processed"], result["succeeded"], result["failed"]) == (3, 2, 1)
    assert "started_at" in result
    assert get_log_context() == {}


@pytest.mark.asyncio
async def test_retry_failed_notifications(mock_service: MagicMock) -> None:
    result = await jobs.retry_failed_notifications()

    assert result["status"] == "success"
    assert result["succeeded"] == 1


@pytest.mark.asyncio
async def test_cleanup_old_notifications(mock_service: MagicMock) -> None:
    result = await jobs.cleanup_old_notifications()

    assert result["status"] == "success"
    assert result["deleted_count"] == 7


@pytest.mark.asyncio
async def test_job_errors_are_reported_not_raised(mock_service: MagicMock) -> None:
    mock_service.process_due.side_effect = RuntimeError("database gone")
    mock_service.cleanup_old.side_effect = RuntimeError("database gone")

    assert (await jobs.process_scheduled_notifications())["status"] == "error"
    assert (await jobs.cleanup_old_notifications())["status"] == "error"
    assert get_log_context() == {}


def test_setup_registers_three_jobs(monkeypatch: pytest.MonkeyPatch, clean_scheduler) -> None:
    monkeypatch.setenv("NOTIFY_SCHEDULER_ENABLED", "true")
    clear_all_caches()

    setup_scheduled_jobs()

    status = {job["id"]: job for job in get_job_status()}
    assert set(status) == {"process_due", "retry_failed", "cleanup"}
    assert status["cleanup"]["name"] == "Delete notifications past retention"


def test_setup_skipped_when_disabled(monkeypatch: pytest.MonkeyPatch, clean_scheduler) -> None:
    monkeypatch.setenv("NOTIFY_SCHEDULER_ENABLED", "false")
    clear_all_caches()

    setup_scheduled_jobs()

    assert get_job_status() == []
