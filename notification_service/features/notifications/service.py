"""Notification orchestrator: create, send, schedule and background sweeps.

State machine of a notification row:

    PENDING -> SENT -> DELIVERED
    PENDING -> FAILED      (retried by the retry sweep until the budget is spent)
    PENDING -> SKIPPED     (no usable recipient on any channel, or suppressed)
    PENDING -> CANCELLED   (only for scheduled rows)

Status only moves forward as channels report back; see ``apply_outcome``.

Database work happens in a prepare phase and a finish phase around
dispatch. Channel dispatch runs concurrently, bounded by
``NOTIFY_MAX_CONCURRENCY``, and only touches the in-memory row.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
import uuid

from notification_service.core.database import as_utc, utcnow
from notification_service.core.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from notification_service.core.services.base import BaseService
from notification_service.core.settings import get_notification_settings
from notification_service.features.notifications.channels.dispatcher import (
    ChannelDispatcher,
    get_channel_dispatcher,
)
from notification_service.features.notifications.enums import (
    SUPPORTED_LOCALES,
    ChannelType,
    NotificationKind,
    NotificationStatus,
    Priority,
    is_valid,
)
from notification_service.features.notifications.metrics import (
    notification_bulk_recipients_total,
    notification_cancelled_total,
    notification_created_total,
    notification_job_items_total,
    notification_retry_attempts_total,
    notification_scheduled_total,
)
from notification_service.features.notifications.models import Notification
from notification_service.features.notifications.preferences import (
    PreferenceResolver,
    default_channels_for,
    get_preference_resolver,
)
from notification_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from notification_service.features.notifications.templates.renderer import TemplateRenderError
from notification_service.features.notifications.templates.service import (
    TemplateService,
    get_template_service,
)
from notification_service.features.realtime.registry import get_delivery_registry
from notification_service.infra.database import get_async_session

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.database import SearchResult
    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.channels.base import ChannelOutcome
    from notification_service.features.notifications.models import NotificationTemplate

# Keys of Notification.data owned by the orchestrator, the rest are template variables
RESERVED_DATA_KEYS = (
    "contact",
    "channels",  # requested by the caller; overrides preferences on resend
    "planned_channels",  # resolved at send time, informational
    "locale",
    "template_id",
    "error",
    "retry_count",
    "delivery",
    "skip_reason",
)

SUPPRESSED_REASON = "Suppressed by user preference"

SUCCESS_STATUSES = (NotificationStatus.SENT.value, NotificationStatus.DELIVERED.value)


@dataclass
class SendResult:
    """Outcome of one send.

    ``notification`` is the persisted row; ``outcomes`` maps each
    dispatched channel to the status it reached, so callers see
    per-channel detail instead of only the row's aggregate status.
    """

    notification: Notification
    outcomes: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return any(status in SUCCESS_STATUSES for status in self.outcomes.values())


@dataclass
class BulkResult:
    success_count: int = 0
    failed_count: int = 0
    notifications: list[Notification] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class JobResult:
    """Counters reported by the scheduler and retry sweeps."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class DeliveryPlan:
    channels: list[str]
    templates: dict[str, NotificationTemplate]
    locale: str
    content: dict[str, Any] = field(default_factory=dict)

    @property
    def primary(self) -> str:
        return self.channels[0]


def _normalize_datetime(value: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _failed_channels(notification: Notification) -> list[str] | None:
    """Channels with a recorded error, or None for a full resend.

    Errors recorded by a sweep stage ("scheduler", "retry") or by preference
    suppression name no channel, so such rows are redelivered on every
    planned channel.
    """
    errors = (notification.data or {}).get("error") or {}
    channels = [key for key in errors if is_valid(ChannelType, key)]
    return channels or None


class NotificationService(BaseService):
    """Service for creating, sending and tracking notifications.

    Provides:
    - create(): persist a PENDING row without dispatch
    - send() / send_bulk() / send_topic(): resolve channels, render and dispatch
    - schedule() / cancel_scheduled(): deferred delivery
    - process_due() / retry_failed() / cleanup_old(): background sweeps
    - inbox reads and read-state updates
    """

    def __init__(
        self,
        repository: NotificationRepository | None = None,
        resolver: PreferenceResolver | None = None,
        templates: TemplateService | None = None,
        dispatcher: ChannelDispatcher | None = None,
        settings: NotificationSettings | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_notification_repository()
        self._resolver = resolver or get_preference_resolver()
        self._templates = templates or get_template_service()
        self._dispatcher = dispatcher or get_channel_dispatcher()
        self._settings = settings or get_notification_settings()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, session: AsyncSession, data: dict[str, Any]) -> Notification:
        """Persist a PENDING notification without dispatching it.

        Raises:
            ValidationException: On missing fields or unknown enum values
        """
        self._validate(data)
        channel = data.get("channel") or (data.get("channels") or default_channels_for(data["kind"]))[0]
        notification = self._build_row(data, channel=channel, content=data.get("content") or {})
        notification = await self._repository.create(session, notification)
        notification_created_total.labels(kind=notification.kind, priority=notification.priority).inc()
        self.logger.info(
            "Notification created",
            extra={"notification_id": str(notification.id), "user_id": notification.user_id, "kind": notification.kind},
        )
        return notification

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(self, session: AsyncSession, data: dict[str, Any]) -> SendResult:
        """Resolve channels, create the row and dispatch to every channel.

        Delivery problems never raise; they land in the row's status and
        ``data["error"]``.

        Raises:
            ValidationException: On missing fields or unknown enum values
        """
        self._validate(data)
        notification, plan = await self._prepare(session, data)
        if plan is None:
            return SendResult(notification)

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        outcomes = await self._dispatch(notification, plan, semaphore)
        return await self._finish(session, notification, outcomes)

    async def send_bulk(
        self,
        session: AsyncSession,
        recipients: Sequence[dict[str, Any]],
        data: dict[str, Any],
    ) -> BulkResult:
        """Send the same notification to many recipients.

        Each recipient entry carries ``user_id``, ``user_type`` and an
        optional ``recipient`` contact. A failing recipient is counted and
        never aborts the batch.
        """
        result = BulkResult()
        prepared: list[tuple[Notification, DeliveryPlan | None]] = []

        for index, recipient in enumerate(recipients):
            payload = {**data, **{k: v for k, v in recipient.items() if v is not None}}
            key = str(payload.get("user_id") or f"#{index}")
            try:
                self._validate(payload)
                async with session.begin_nested():
                    prepared.append(await self._prepare(session, payload))
            except Exception as e:
                self.logger.warning(
                    "Bulk recipient failed during preparation",
                    extra={"user_id": key, "error": str(e)},
                )
                result.failed_count += 1
                result.errors[key] = getattr(e, "detail", None) or str(e)

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        dispatched = await asyncio.gather(
            *(self._dispatch(n, plan, semaphore) for n, plan in prepared if plan is not None)
        )

        outcome_iter = iter(dispatched)
        for notification, plan in prepared:
            outcomes = next(outcome_iter) if plan is not None else {}
            send_result = await self._finish(session, notification, outcomes)
            result.notifications.append(notification)
            if send_result.succeeded:
                result.success_count += 1
            else:
                result.failed_count += 1
                result.errors[notification.user_id] = "No channel delivered"

        notification_bulk_recipients_total.labels(status="succeeded").inc(result.success_count)
        notification_bulk_recipients_total.labels(status="failed").inc(result.failed_count)
        self.logger.info(
            "Bulk send completed",
            extra={
                "kind": data.get("kind"),
                "recipients": len(recipients),
                "succeeded": result.success_count,
                "failed": result.failed_count,
            },
        )
        return result

    async def send_topic(
        self,
        session: AsyncSession,
        topic: str,
        kind: str,
        data: dict[str, Any],
        locale: str | None = None,
    ) -> bool:
        """Render once and broadcast to a push topic. Nothing is persisted per recipient."""
        if not is_valid(NotificationKind, kind):
            raise ValidationException(detail=f"Invalid notification kind: {kind}", extra={"kind": kind})
        if not topic or not topic.strip():
            raise ValidationException(detail="Topic is required", extra={"topic": topic})
        template = await self._templates.get_for_notification(
            session, kind, ChannelType.PUSH.value, self._locale(locale)
        )
        sent = await self._dispatcher.send_to_topic(topic, template, data)
        self.logger.info("Topic send", extra={"topic": topic, "kind": kind, "sent": sent})
        return sent

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        scheduled_for: datetime,
        now: datetime | None = None,
    ) -> Notification:
        """Persist a PENDING row with empty content for later processing.

        Raises:
            ValidationException: On invalid data or a time not in the future
        """
        self._validate(data)
        when = _normalize_datetime(scheduled_for)
        if when <= (now or utcnow()):
            raise ValidationException(
                detail="scheduled_for must be in the future",
                extra={"scheduled_for": when.isoformat()},
            )

        channel = (data.get("channels") or default_channels_for(data["kind"]))[0]
        notification = self._build_row(data, channel=channel, content={})
        notification.scheduled_for = when
        notification = await self._repository.create(session, notification)

        notification_scheduled_total.labels(kind=notification.kind).inc()
        self.logger.info(
            "Notification scheduled",
            extra={"notification_id": str(notification.id), "scheduled_for": when.isoformat()},
        )
        return notification

    async def cancel_scheduled(self, session: AsyncSession, notification_id: UUID) -> Notification:
        """Cancel a scheduled notification.

        Raises:
            NotFoundException: Unknown id
            ConflictException: Not PENDING or not scheduled
        """
        notification = await self.get(session, notification_id)
        if notification.status != NotificationStatus.PENDING.value or notification.scheduled_for is None:
            raise ConflictException(
                detail="Only pending scheduled notifications can be cancelled",
                type="invalid-notification-state",
                extra={
                    "notification_id": str(notification_id),
                    "current_status": notification.status,
                    "scheduled": notification.scheduled_for is not None,
                },
            )
        notification.status = NotificationStatus.CANCELLED.value
        notification = await self._repository.save(session, notification)
        notification_cancelled_total.inc()
        self.logger.info("Scheduled notification cancelled", extra={"notification_id": str(notification_id)})
        return notification

    # ------------------------------------------------------------------
    # Background sweeps
    # ------------------------------------------------------------------

    async def process_due(self, now: datetime | None = None, limit: int = 100) -> JobResult:
        """Send every PENDING row whose scheduled time has passed.

        Each row runs in its own session and commit. A failing row is
        marked FAILED and the loop moves on.
        """
        now = now or utcnow()
        async with get_async_session() as session:
            due_ids = [n.id for n in await self._repository.list_due(session, now, limit=limit)]

        result = JobResult()
        for notification_id in due_ids:
            result.processed += 1
            try:
                async with get_async_session() as session:
                    notification = await self._repository.get(session, notification_id)
                    if notification is None or notification.status != NotificationStatus.PENDING.value:
                        continue
                    send_result = await self._redeliver(session, notification)
                    await session.commit()
            except Exception as e:
                await self._mark_failed(notification_id, "scheduler", e)
                result.failed += 1
                continue

            if send_result.succeeded:
                result.succeeded += 1
            else:
                result.failed += 1

        notification_job_items_total.labels(job="process_due", result="succeeded").inc(result.succeeded)
        notification_job_items_total.labels(job="process_due", result="failed").inc(result.failed)
        if result.processed:
            self.logger.info(
                "Processed due notifications",
                extra={"processed": result.processed, "succeeded": result.succeeded, "failed": result.failed},
            )
        return result

    async def retry_failed(
        self,
        max_retries: int | None = None,
        max_age_hours: int | None = None,
        now: datetime | None = None,
        limit: int = 100,
    ) -> JobResult:
        """Re-send FAILED rows that are recent enough and have retry budget left.

        Only the channels that recorded an error are re-attempted.
        """
        max_retries = self._settings.retry_attempts if max_retries is None else max_retries
        max_age_hours = self._settings.retry_max_age_hours if max_age_hours is None else max_age_hours
        cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)

        async with get_async_session() as session:
            candidates = await self._repository.list_retryable(session, cutoff, max_retries, limit=limit)
            retry_ids = [n.id for n in candidates]

        result = JobResult()
        for notification_id in retry_ids:
            result.processed += 1
            try:
                async with get_async_session() as session:
                    notification = await self._repository.get(session, notification_id)
                    if notification is None or notification.status != NotificationStatus.FAILED.value:
                        continue
                    if notification.retry_count >= max_retries:
                        continue
                    notification.data = {**(notification.data or {}), "retry_count": notification.retry_count + 1}
                    send_result = await self._redeliver(session, notification, only=_failed_channels(notification))
                    await session.commit()
            except Exception as e:
                await self._mark_failed(notification_id, "retry", e, count_retry=True)
                result.failed += 1
                notification_retry_attempts_total.labels(status="error").inc()
                continue

            if send_result.succeeded:
                result.succeeded += 1
                notification_retry_attempts_total.labels(status="succeeded").inc()
            else:
                result.failed += 1
                notification_retry_attempts_total.labels(status="failed").inc()

        if result.processed:
            self.logger.info(
                "Retried failed notifications",
                extra={"processed": result.processed, "succeeded": result.succeeded, "failed": result.failed},
            )
        return result

    async def cleanup_old(self, days_to_keep: int | None = None, now: datetime | None = None) -> int:
        """Delete every notification older than the retention window, any status."""
        days = self._settings.retention_days if days_to_keep is None else days_to_keep
        cutoff = (now or utcnow()) - timedelta(days=days)
        async with get_async_session() as session:
            deleted = await self._repository.delete_older_than(session, cutoff)
            await session.commit()
        notification_job_items_total.labels(job="cleanup", result="deleted").inc(deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads and read state
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, notification_id: UUID) -> Notification:
        notification = await self._repository.get(session, notification_id)
        if notification is None:
            raise NotFoundException(
                detail=f"Notification {notification_id} not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        return notification

    async def get_for_user(self, session: AsyncSession, notification_id: UUID | str, user_id: str) -> Notification:
        """Fetch a notification owned by ``user_id``.

        A malformed id or another user's notification is reported as not
        found, so ids of other users are never confirmed.
        """
        try:
            key = notification_id if isinstance(notification_id, uuid.UUID) else uuid.UUID(str(notification_id))
        except ValueError:
            key = None
        notification = await self._repository.get(session, key) if key else None
        if notification is None or notification.user_id != user_id:
            raise NotFoundException(
                detail=f"Notification {notification_id} not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        return notification

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
        **filters: Any,
    ) -> SearchResult[Notification]:
        page = max(page, 1)
        return await self._repository.list_for_user(
            session,
            user_id,
            sort_by=sort_by,
            sort_direction=sort_direction,
            limit=limit,
            offset=(page - 1) * limit,
            **filters,
        )

    async def unread_count(self, session: AsyncSession, user_id: str) -> int:
        return await self._repository.unread_count(session, user_id)

    async def mark_as_read(self, session: AsyncSession, notification_id: UUID) -> Notification:
        notification = await self.get(session, notification_id)
        if not notification.read:
            notification.read = True
            notification.read_at = utcnow()
            notification = await self._repository.save(session, notification)
        return notification

    async def mark_all_as_read(self, session: AsyncSession, user_id: str) -> int:
        updated = await self._repository.mark_all_as_read(session, user_id, utcnow())
        self.logger.info("Marked notifications as read", extra={"user_id": user_id, "updated": updated})
        return updated

    async def delete(self, session: AsyncSession, notification_id: UUID) -> None:
        notification = await self.get(session, notification_id)
        await self._repository.delete(session, notification)

    async def push_read_state(
        self,
        session: AsyncSession,
        user_id: str,
        notification: Notification | None = None,
    ) -> None:
        """Push the updated record and unread count to the user's live socket.

        Call after commit; does nothing when no registry is running.
        """
        try:
            registry = get_delivery_registry()
        except RuntimeError:
            return
        if notification is not None:
            await registry.broadcast(user_id, notification.to_payload())
        await registry.send_unread_count(user_id, await self.unread_count(session, user_id))

    async def statistics(
        self,
        session: AsyncSession,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict[str, Any]:
        """Aggregate counts and rates over notifications created in a range."""
        start = _normalize_datetime(start_date) if start_date else None
        end = _normalize_datetime(end_date) if end_date else None

        by_status = await self._repository.count_by(session, Notification.status, start_date=start, end_date=end)
        by_channel = await self._repository.count_by(session, Notification.channel, start_date=start, end_date=end)
        by_kind = await self._repository.count_by(session, Notification.kind, start_date=start, end_date=end)
        by_read = await self._repository.count_by(session, Notification.read, start_date=start, end_date=end)

        total = sum(by_status.values())
        succeeded = sum(by_status.get(s, 0) for s in SUCCESS_STATUSES)
        attempted = total - by_status.get(NotificationStatus.PENDING.value, 0) - by_status.get(
            NotificationStatus.CANCELLED.value, 0
        )
        read = by_read.get("True", 0) + by_read.get("1", 0)

        durations = []
        for row in await self._repository.list_between(session, start_date=start, end_date=end):
            delivered_at, created_at = as_utc(row.delivered_at), as_utc(row.created_at)
            if delivered_at and created_at:
                durations.append((delivered_at - created_at).total_seconds())

        return {
            "total": total,
            "by_status": by_status,
            "by_channel": by_channel,
            "by_kind": by_kind,
            "delivery_success_rate": round(succeeded / attempted, 4) if attempted else 0.0,
            "read_rate": round(read / total, 4) if total else 0.0,
            "average_delivery_seconds": round(sum(durations) / len(durations), 3) if durations else None,
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _prepare(
        self,
        session: AsyncSession,
        data: dict[str, Any],
    ) -> tuple[Notification, DeliveryPlan | None]:
        """Plan channels and templates, then persist the PENDING row."""
        plan = await self._plan(session, data)
        if plan is None:
            notification = self._build_row(data, channel=default_channels_for(data["kind"])[0], content={})
            notification.status = NotificationStatus.SKIPPED.value
            notification.data = {**notification.data, "skip_reason": SUPPRESSED_REASON}
            notification = await self._repository.create(session, notification)
            self.logger.info(
                "Notification suppressed by preference",
                extra={"notification_id": str(notification.id), "user_id": notification.user_id},
            )
            return notification, None

        notification = self._build_row(data, channel=plan.primary, content=plan.content)
        notification.template_id = str(plan.templates[plan.primary].id)
        notification.data = {**notification.data, "planned_channels": plan.channels, "locale": plan.locale}
        notification = await self._repository.create(session, notification)
        notification_created_total.labels(kind=notification.kind, priority=notification.priority).inc()
        return notification, plan

    async def _plan(self, session: AsyncSession, data: dict[str, Any]) -> DeliveryPlan | None:
        """Channels to use and a template per channel; None when all are suppressed."""
        kind, priority = data["kind"], data.get("priority") or Priority.MEDIUM.value
        explicit = data.get("channels") or None

        channels = await self._resolver.determine_channels(
            session, data["user_id"], data["user_type"], kind, priority, explicit=explicit
        )
        if explicit is None and priority != Priority.HIGH.value:
            preference = await self._resolver.resolve(session, data["user_id"], data["user_type"], kind)
            channels = [c for c in channels if self._resolver.should_deliver(preference, c)]
        if not channels:
            return None

        locale = self._locale(data.get("locale"))
        templates: dict[str, NotificationTemplate] = {}
        # A requested template only applies to the channel it was written for
        for channel in channels:
            templates[channel] = await self._templates.get_for_notification(
                session, kind, channel, locale, template_id=data.get("template_id")
            )

        plan = DeliveryPlan(channels=channels, templates=templates, locale=locale)
        try:
            plan.content = self._templates.render(templates[plan.primary], self._context(data))
        except TemplateRenderError as e:
            self.logger.warning(
                "Primary template could not be rendered",
                extra={"template": e.template_name, "error": str(e)},
            )
        return plan

    async def _dispatch(
        self,
        notification: Notification,
        plan: DeliveryPlan,
        semaphore: asyncio.Semaphore,
        only: Sequence[str] | None = None,
    ) -> dict[str, ChannelOutcome]:
        contact = dict(notification.data.get("contact") or {})
        channels = [c for c in plan.channels if not only or c in only]

        async def _one(channel: str) -> ChannelOutcome:
            async with semaphore:
                return await self._dispatcher.dispatch(notification, plan.templates[channel], channel, contact)

        outcomes = await asyncio.gather(*(_one(c) for c in channels))
        return {o.channel: o for o in outcomes}

    async def _finish(
        self,
        session: AsyncSession,
        notification: Notification,
        outcomes: dict[str, ChannelOutcome],
    ) -> SendResult:
        summary = {channel: outcome.status.value for channel, outcome in outcomes.items()}
        if summary:
            delivery = {**(notification.data.get("delivery") or {}), **summary}
            notification.data = {**notification.data, "delivery": delivery}
        notification = await self._repository.save(session, notification)
        self.logger.info(
            "Notification sent",
            extra={"notification_id": str(notification.id), "status": notification.status, "outcomes": summary},
        )
        return SendResult(notification=notification, outcomes=summary)

    async def _redeliver(
        self,
        session: AsyncSession,
        notification: Notification,
        only: Sequence[str] | None = None,
    ) -> SendResult:
        """Run a send on an existing row using its stored parameters."""
        data = self._params_from_row(notification)
        plan = await self._plan(session, data)
        if plan is None:
            if notification.status == NotificationStatus.PENDING.value:
                notification.status = NotificationStatus.SKIPPED.value
                notification.data = {**notification.data, "skip_reason": SUPPRESSED_REASON}
            else:
                errors = {**(notification.data.get("error") or {}), "preference": SUPPRESSED_REASON}
                notification.data = {**notification.data, "error": errors}
            return SendResult(await self._repository.save(session, notification))

        if not notification.content:
            notification.content = plan.content
        notification.channel = plan.primary
        notification.template_id = str(plan.templates[plan.primary].id)
        notification.data = {**notification.data, "planned_channels": plan.channels, "locale": plan.locale}

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        outcomes = await self._dispatch(notification, plan, semaphore, only=only)
        return await self._finish(session, notification, outcomes)

    async def _mark_failed(
        self,
        notification_id: UUID,
        stage: str,
        error: Exception,
        count_retry: bool = False,
    ) -> None:
        self.logger.exception(
            "Background delivery failed",
            extra={"notification_id": str(notification_id), "stage": stage, "error": str(error)},
        )
        try:
            async with get_async_session() as session:
                notification = await self._repository.get(session, notification_id)
                if notification is None or notification.status == NotificationStatus.CANCELLED.value:
                    return
                data = dict(notification.data or {})
                data["error"] = {**(data.get("error") or {}), stage: str(error) or type(error).__name__}
                if count_retry:
                    data["retry_count"] = int(data.get("retry_count", 0)) + 1
                notification.data = data
                notification.status = NotificationStatus.FAILED.value
                await session.commit()
        except Exception:
            self.logger.exception(
                "Could not record background failure",
                extra={"notification_id": str(notification_id), "stage": stage},
            )

    def _build_row(self, data: dict[str, Any], *, channel: str, content: dict[str, Any]) -> Notification:
        row_data = dict(data.get("data") or {})
        contact = data.get("recipient") or data.get("contact") or row_data.get("contact")
        if contact:
            row_data["contact"] = dict(contact)
        if data.get("channels"):
            row_data["channels"] = list(dict.fromkeys(data["channels"]))
        if data.get("template_id"):
            row_data["template_id"] = str(data["template_id"])
        if data.get("locale"):
            row_data["locale"] = data["locale"]

        return Notification(
            user_id=str(data["user_id"]),
            user_type=str(data["user_type"]),
            kind=data["kind"],
            channel=channel,
            content=content,
            data=row_data,
            status=NotificationStatus.PENDING.value,
            priority=data.get("priority") or Priority.MEDIUM.value,
            read=False,
            reference_id=data.get("reference_id"),
            reference_type=data.get("reference_type"),
        )

    @staticmethod
    def _params_from_row(notification: Notification) -> dict[str, Any]:
        stored = notification.data or {}
        return {
            "user_id": notification.user_id,
            "user_type": notification.user_type,
            "kind": notification.kind,
            "priority": notification.priority,
            "channels": stored.get("channels"),
            "locale": stored.get("locale"),
            "template_id": stored.get("template_id"),
            "data": {k: v for k, v in stored.items() if k not in RESERVED_DATA_KEYS},
        }

    @staticmethod
    def _context(data: dict[str, Any]) -> dict[str, Any]:
        return dict(data.get("data") or {})

    def _locale(self, locale: str | None) -> str:
        return locale or self._settings.default_locale

    @staticmethod
    def _validate(data: dict[str, Any]) -> None:
        errors: list[str] = []
        for required in ("user_id", "user_type", "kind"):
            if not data.get(required):
                errors.append(f"'{required}' is required")
        if data.get("kind") and not is_valid(NotificationKind, data["kind"]):
            errors.append(f"Invalid notification kind: {data['kind']}")
        if data.get("priority") and not is_valid(Priority, data["priority"]):
            errors.append(f"Invalid priority: {data['priority']}")
        if data.get("channel") and not is_valid(ChannelType, data["channel"]):
            errors.append(f"Invalid channel: {data['channel']}")
        channels = data.get("channels")
        if channels is not None:
            if not isinstance(channels, (list, tuple)):
                errors.append("'channels' must be a list")
            else:
                errors.extend(f"Invalid channel: {c}" for c in channels if not is_valid(ChannelType, c))
        if data.get("locale") and data["locale"] not in SUPPORTED_LOCALES:
            errors.append(f"Unsupported locale: {data['locale']}")
        if errors:
            raise ValidationException(detail="Invalid notification data", extra={"errors": errors})


_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create the singleton NotificationService instance."""
    global _service
    if _service is None:
        _service = NotificationService()
    return _service


__all__ = [
    "BulkResult",
    "JobResult",
    "NotificationService",
    "SendResult",
    "get_notification_service",
]
