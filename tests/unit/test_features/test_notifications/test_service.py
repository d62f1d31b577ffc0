"""Tests for the notification orchestrator."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from notification_service.core.database import utcnow
from notification_service.core.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from notification_service.features.notifications.enums import NotificationStatus
from notification_service.features.notifications.preferences import PreferenceResolver
from notification_service.features.notifications.repository import NotificationRepository
from notification_service.features.notifications.service import NotificationService


def _payload(**overrides: Any) -> dict[str, Any]:
    values: dict[str, Any] = {
        "user_id": "u1",
        "user_type": "driver",
        "kind": "payment",
        "recipient": {"email": "u1@example.com", "device_tokens": ["tok-1"]},
        "data": {"amount": 120},
    }
    values.update(overrides)
    return values


# ============================================================================
# Send
# ============================================================================


@pytest.mark.asyncio
async def test_send_uses_preference_channels(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    result = await notification_service.send(db_session, _payload())

    assert result.outcomes == {"push": "sent", "email": "sent", "in_app": "sent"}
    assert result.succeeded is True
    notification = result.notification
    assert notification.status == NotificationStatus.SENT.value
    assert notification.channel == "push"
    assert notification.content == {"title": "Payment", "body": "You have a new notification."}
    assert notification.data["delivery"] == result.outcomes
    assert notification.data["contact"] == {"email": "u1@example.com", "device_tokens": ["tok-1"]}
    assert backends["email"].calls[0]["recipient"] == "u1@example.com"
    assert backends["push"].calls[0]["recipient"] == ["tok-1"]


@pytest.mark.asyncio
async def test_send_rejects_invalid_payload(db_session: AsyncSession, notification_service: NotificationService) -> None:
    with pytest.raises(ValidationException) as exc_info:
        await notification_service.send(
            db_session,
            {"user_id": "u1", "kind": "weather", "priority": "urgent", "channels": ["fax"]},
        )
    errors = exc_info.value.extra["errors"]
    assert "'user_type' is required" in errors
    assert "Invalid notification kind: weather" in errors
    assert "Invalid priority: urgent" in errors
    assert "Invalid channel: fax" in errors


@pytest.mark.asyncio
async def test_missing_recipients_are_skipped_per_channel(
    db_session: AsyncSession,
    notification_service: NotificationService,
) -> None:
    result = await notification_service.send(db_session, _payload(recipient=None, channels=["email", "sms"]))

    assert result.outcomes == {"email": "skipped", "sms": "skipped"}
    assert result.succeeded is False
    assert result.notification.status == NotificationStatus.SKIPPED.value
    assert set(result.notification.data["error"]) == {"email", "sms"}


@pytest.mark.asyncio
async def test_disabled_preference_suppresses_send(
    db_session: AsyncSession,
    notification_service: NotificationService,
    resolver: PreferenceResolver,
    backends,
) -> None:
    await resolver.set_enabled(db_session, "u1", "driver", "payment", False)

    result = await notification_service.send(db_session, _payload())

    assert result.outcomes == {}
    assert result.notification.status == NotificationStatus.SKIPPED.value
    assert result.notification.data["skip_reason"] == "Suppressed by user preference"
    assert all(not backend.calls for backend in backends.values())


@pytest.mark.asyncio
async def test_high_priority_bypasses_suppression_and_adds_push(
    db_session: AsyncSession,
    notification_service: NotificationService,
    resolver: PreferenceResolver,
) -> None:
    await resolver.set_enabled(db_session, "u1", "driver", "driver_status", False)

    result = await notification_service.send(db_session, _payload(kind="driver_status", priority="high"))

    assert list(result.outcomes) == ["push", "in_app", "email"]
    assert result.notification.channel == "push"
    assert result.notification.status == NotificationStatus.SENT.value


@pytest.mark.asyncio
async def test_high_priority_adds_push_to_stored_channels(
    db_session: AsyncSession,
    notification_service: NotificationService,
    resolver: PreferenceResolver,
    backends,
) -> None:
    await resolver.update_channels(db_session, "u1", "driver", "payment", ["email"])

    result = await notification_service.send(db_session, _payload(priority="high"))

    assert list(result.outcomes) == ["push", "email"]
    assert result.notification.data["planned_channels"] == ["push", "email"]
    assert len(backends["push"].calls) == 1
    assert len(backends["email"].calls) == 1
    assert backends["in_app"].calls == []


@pytest.mark.asyncio
async def test_requested_template_applies_to_its_own_channel(
    db_session: AsyncSession,
    notification_service: NotificationService,
    template_service,
    backends,
) -> None:
    custom = await template_service.create(
        db_session,
        {
            "name": "payment-email-custom",
            "kind": "payment",
            "channel": "email",
            "content": {"subject": "Paid {{ amount }}", "text": "Payout of {{ amount }} sent."},
            "variables": ["amount"],
        },
    )

    result = await notification_service.send(
        db_session, _payload(channels=["push", "email"], template_id=str(custom.id))
    )

    assert result.outcomes == {"push": "sent", "email": "sent"}
    assert result.notification.content == {"title": "Payment", "body": "You have a new notification."}
    assert result.notification.template_id != str(custom.id)
    assert backends["email"].calls[0]["content"] == {"subject": "Paid 120", "text": "Payout of 120 sent."}
    assert backends["push"].calls[0]["content"]["title"] == "Payment"


@pytest.mark.asyncio
async def test_delivered_channel_lifts_row_status(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    backends["in_app"].status = NotificationStatus.DELIVERED
    backends["email"].status = NotificationStatus.FAILED

    result = await notification_service.send(db_session, _payload(channels=["email", "in_app"]))

    assert result.outcomes == {"email": "failed", "in_app": "delivered"}
    assert result.notification.status == NotificationStatus.DELIVERED.value
    assert result.notification.delivered_at is not None
    assert result.notification.data["error"] == {"email": "provider rejected"}


@pytest.mark.asyncio
async def test_bulk_counts_partial_failures(
    db_session: AsyncSession,
    notification_service: NotificationService,
) -> None:
    recipients = [
        {"user_id": "u1", "user_type": "driver", "recipient": {"email": "u1@example.com"}},
        {"user_id": "u2", "user_type": "driver"},
        {"user_id": "u3", "user_type": None},
    ]

    result = await notification_service.send_bulk(
        db_session,
        recipients,
        {"kind": "system_alert", "channels": ["email"], "data": {}},
    )

    assert result.success_count == 1
    assert result.failed_count == 2
    assert [n.user_id for n in result.notifications] == ["u1", "u2"]
    assert result.errors["u2"] == "No channel delivered"
    assert "u3" in result.errors


@pytest.mark.asyncio
async def test_send_topic(db_session: AsyncSession, notification_service: NotificationService) -> None:
    with pytest.raises(ValidationException):
        await notification_service.send_topic(db_session, " ", "payment", {})
    with pytest.raises(ValidationException):
        await notification_service.send_topic(db_session, "drivers", "weather", {})


# ============================================================================
# Scheduling
# ============================================================================


@pytest.mark.asyncio
async def test_schedule_requires_future_time(
    db_session: AsyncSession,
    notification_service: NotificationService,
) -> None:
    with pytest.raises(ValidationException):
        await notification_service.schedule(db_session, _payload(), utcnow() - timedelta(minutes=1))


@pytest.mark.asyncio
async def test_schedule_and_cancel(db_session: AsyncSession, notification_service: NotificationService) -> None:
    scheduled = await notification_service.schedule(db_session, _payload(), utcnow() + timedelta(hours=1))

    assert scheduled.status == NotificationStatus.PENDING.value
    assert scheduled.content == {}
    assert scheduled.scheduled_for is not None

    cancelled = await notification_service.cancel_scheduled(db_session, scheduled.id)
    assert cancelled.status == NotificationStatus.CANCELLED.value

    with pytest.raises(ConflictException):
        await notification_service.cancel_scheduled(db_session, scheduled.id)


@pytest.mark.asyncio
async def test_cancel_requires_scheduled_row(db_session: AsyncSession, notification_service: NotificationService) -> None:
    immediate = await notification_service.create(db_session, _payload())
    with pytest.raises(ConflictException):
        await notification_service.cancel_scheduled(db_session, immediate.id)


# ============================================================================
# Background sweeps
# ============================================================================


@pytest.mark.asyncio
async def test_process_due_sends_scheduled_rows(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    due = await notification_service.schedule(
        db_session, _payload(channels=["in_app"]), utcnow() + timedelta(minutes=5)
    )
    later = await notification_service.schedule(
        db_session, _payload(channels=["in_app"]), utcnow() + timedelta(hours=3)
    )
    await db_session.commit()

    result = await notification_service.process_due(now=utcnow() + timedelta(minutes=10))

    assert (result.processed, result.succeeded, result.failed) == (1, 1, 0)
    await db_session.refresh(due)
    await db_session.refresh(later)
    assert due.status == NotificationStatus.SENT.value
    assert due.content == {"title": "Payment", "body": "You have a new notification."}
    assert later.status == NotificationStatus.PENDING.value
    assert len(backends["in_app"].calls) == 1


@pytest.mark.asyncio
async def test_retry_resends_only_failed_channels(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    notification = await notification_service.create(db_session, _payload(channels=["email", "in_app"]))
    notification.status = NotificationStatus.FAILED.value
    notification.data = {**notification.data, "error": {"email": "provider rejected"}}
    await db_session.commit()

    result = await notification_service.retry_failed()

    assert (result.processed, result.succeeded) == (1, 1)
    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.SENT.value
    assert notification.retry_count == 1
    assert "error" not in notification.data
    assert len(backends["email"].calls) == 1
    assert backends["in_app"].calls == []


@pytest.mark.asyncio
async def test_retry_respects_budget(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    notification = await notification_service.create(db_session, _payload(channels=["email"]))
    notification.status = NotificationStatus.FAILED.value
    notification.data = {**notification.data, "error": {"email": "x"}, "retry_count": 3}
    await db_session.commit()

    result = await notification_service.retry_failed(max_retries=3)

    assert result.processed == 0
    assert backends["email"].calls == []


@pytest.mark.asyncio
async def test_retry_that_fails_again_counts_attempt(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    backends["email"].status = NotificationStatus.FAILED
    notification = await notification_service.create(db_session, _payload(channels=["email"]))
    notification.status = NotificationStatus.FAILED.value
    notification.data = {**notification.data, "error": {"email": "x"}}
    await db_session.commit()

    result = await notification_service.retry_failed()

    assert (result.processed, result.failed) == (1, 1)
    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.FAILED.value
    assert notification.retry_count == 1
    assert notification.data["error"] == {"email": "provider rejected"}


@pytest.mark.asyncio
async def test_retry_after_scheduler_error_resends_every_channel(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    notification = await notification_service.schedule(
        db_session, _payload(channels=["email", "in_app"]), utcnow() + timedelta(minutes=5)
    )
    await db_session.commit()

    plan = notification_service._plan
    attempts: list[int] = []

    async def flaky_plan(session, data):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("template store unavailable")
        return await plan(session, data)

    monkeypatch.setattr(notification_service, "_plan", flaky_plan)

    due = await notification_service.process_due(now=utcnow() + timedelta(minutes=10))
    assert (due.processed, due.failed) == (1, 1)
    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.FAILED.value
    assert notification.data["error"] == {"scheduler": "template store unavailable"}
    await db_session.commit()

    result = await notification_service.retry_failed()

    assert (result.processed, result.succeeded) == (1, 1)
    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.SENT.value
    assert notification.retry_count == 1
    assert len(backends["email"].calls) == 1
    assert len(backends["in_app"].calls) == 1


@pytest.mark.asyncio
async def test_retry_of_suppressed_row_keeps_failed_status(
    db_session: AsyncSession,
    notification_service: NotificationService,
    resolver: PreferenceResolver,
    backends,
) -> None:
    notification = await notification_service.create(db_session, _payload())
    notification.status = NotificationStatus.FAILED.value
    notification.data = {**notification.data, "error": {"email": "provider rejected"}}
    await resolver.set_enabled(db_session, "u1", "driver", "payment", False)
    await db_session.commit()

    result = await notification_service.retry_failed()

    assert (result.processed, result.failed) == (1, 1)
    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.FAILED.value
    assert notification.retry_count == 1
    assert notification.data["error"]["preference"] == "Suppressed by user preference"
    assert notification.data["error"]["email"] == "provider rejected"
    assert all(not backend.calls for backend in backends.values())


@pytest.mark.asyncio
async def test_retry_skips_rows_past_the_age_cutoff(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    notification = await notification_service.create(db_session, _payload(channels=["email"]))
    notification.status = NotificationStatus.FAILED.value
    notification.data = {**notification.data, "error": {"email": "x"}}
    notification.created_at = utcnow() - timedelta(hours=25)
    await db_session.commit()

    result = await notification_service.retry_failed()

    assert result.processed == 0
    assert backends["email"].calls == []
    await db_session.refresh(notification)
    assert notification.retry_count == 0


@pytest.mark.asyncio
async def test_retryable_query_filters_budget_and_limit_in_sql(
    db_session: AsyncSession,
    notification_service: NotificationService,
) -> None:
    rows = []
    for hours_ago, retry_count in ((3, 3), (2, 1), (1, 0)):
        notification = await notification_service.create(db_session, _payload(channels=["email"]))
        notification.status = NotificationStatus.FAILED.value
        notification.data = {**notification.data, "error": {"email": "x"}, "retry_count": retry_count}
        notification.created_at = utcnow() - timedelta(hours=hours_ago)
        rows.append(notification)
    await db_session.commit()

    repository = NotificationRepository()
    cutoff = utcnow() - timedelta(hours=24)

    first = await repository.list_retryable(db_session, cutoff, 3, limit=1)
    eligible = await repository.list_retryable(db_session, cutoff, 3, limit=10)

    assert [n.id for n in first] == [rows[1].id]
    assert [n.id for n in eligible] == [rows[1].id, rows[2].id]


@pytest.mark.asyncio
async def test_cleanup_deletes_old_rows_of_any_status(
    db_session: AsyncSession,
    notification_service: NotificationService,
) -> None:
    old = await notification_service.create(db_session, _payload())
    old.created_at = utcnow() - timedelta(days=45)
    old.status = NotificationStatus.SENT.value
    fresh = await notification_service.create(db_session, _payload())
    await db_session.commit()

    deleted = await notification_service.cleanup_old(days_to_keep=30)

    assert deleted == 1
    db_session.expunge_all()
    with pytest.raises(NotFoundException):
        await notification_service.get(db_session, old.id)
    assert (await notification_service.get(db_session, fresh.id)).id == fresh.id


# ============================================================================
# Reads and read state
# ============================================================================


@pytest.mark.asyncio
async def test_get_for_user_hides_other_users(
    db_session: AsyncSession,
    notification_service: NotificationService,
) -> None:
    notification = await notification_service.create(db_session, _payload())

    assert (await notification_service.get_for_user(db_session, str(notification.id), "u1")).id == notification.id
    with pytest.raises(NotFoundException):
        await notification_service.get_for_user(db_session, notification.id, "someone-else")
    with pytest.raises(NotFoundException):
        await notification_service.get_for_user(db_session, "not-a-uuid", "u1")


@pytest.mark.asyncio
async def test_read_state(db_session: AsyncSession, notification_service: NotificationService) -> None:
    first = await notification_service.create(db_session, _payload())
    await notification_service.create(db_session, _payload())
    await notification_service.create(db_session, _payload(user_id="u2"))

    assert await notification_service.unread_count(db_session, "u1") == 2

    marked = await notification_service.mark_as_read(db_session, first.id)
    assert marked.read is True
    assert marked.read_at is not None
    assert await notification_service.unread_count(db_session, "u1") == 1

    assert await notification_service.mark_all_as_read(db_session, "u1") == 1
    assert await notification_service.unread_count(db_session, "u1") == 0
    assert await notification_service.unread_count(db_session, "u2") == 1


@pytest.mark.asyncio
async def test_list_for_user_pages(db_session: AsyncSession, notification_service: NotificationService) -> None:
    for _ in range(3):
        await notification_service.create(db_session, _payload())

    page = await notification_service.list_for_user(db_session, "u1", page=2, limit=2)

    assert page.total == 3
    assert len(page.items) == 1


@pytest.mark.asyncio
async def test_statistics(
    db_session: AsyncSession,
    notification_service: NotificationService,
    backends,
) -> None:
    backends["email"].status = NotificationStatus.FAILED
    await notification_service.send(db_session, _payload(channels=["in_app"]))
    await notification_service.send(db_session, _payload(channels=["email"]))
    pending = await notification_service.create(db_session, _payload())
    await notification_service.mark_as_read(db_session, pending.id)

    stats = await notification_service.statistics(db_session)

    assert stats["total"] == 3
    assert stats["by_status"] == {"sent": 1, "failed": 1, "pending": 1}
    assert stats["delivery_success_rate"] == 0.5
    assert stats["read_rate"] == round(1 / 3, 4)
    assert stats["by_channel"]["in_app"] == 1
