"""Channel dispatcher coordinating the closed set of channel backends."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from notification_service.core.database import utcnow
from notification_service.core.settings import get_notification_settings
from notification_service.features.notifications.channels.base import ChannelOutcome
from notification_service.features.notifications.channels.email import EmailChannel
from notification_service.features.notifications.channels.in_app import InAppChannel
from notification_service.features.notifications.channels.providers import (
    build_email_provider,
    build_push_provider,
    build_sms_provider,
)
from notification_service.features.notifications.channels.push import PushChannel
from notification_service.features.notifications.channels.sms import SmsChannel
from notification_service.features.notifications.enums import (
    STATUS_RANK,
    ChannelType,
    NotificationStatus,
)
from notification_service.features.notifications.metrics import (
    notification_delivered_total,
    notification_delivery_duration_seconds,
    notification_topic_sent_total,
)
from notification_service.features.notifications.templates.renderer import (
    TemplateRenderError,
    TemplateRenderer,
    get_template_renderer,
)
from notification_service.features.realtime.registry import broadcast_to_user

if TYPE_CHECKING:
    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.features.notifications.channels.base import ChannelBackend
    from notification_service.features.notifications.models import (
        Notification,
        NotificationTemplate,
    )

logger = logging.getLogger(__name__)


def apply_outcome(notification: Notification, outcome: ChannelOutcome) -> None:
    """Fold one channel outcome into the notification row.

    Status only moves up the ladder pending < skipped < failed < sent <
    delivered and a cancelled row is never touched. A failure or skip
    records its message under ``data["error"][channel]``; a success clears
    that channel's previous error. The JSON column is reassigned, never
    mutated in place, so the change is tracked.
    """
    if notification.status == NotificationStatus.CANCELLED.value:
        return

    now = utcnow()
    current = NotificationStatus(notification.status)
    if STATUS_RANK[outcome.status] > STATUS_RANK[current]:
        notification.status = outcome.status.value
    if outcome.status in (NotificationStatus.SENT, NotificationStatus.DELIVERED) and notification.sent_at is None:
        notification.sent_at = now
    if outcome.status is NotificationStatus.DELIVERED and notification.delivered_at is None:
        notification.delivered_at = now

    data = dict(notification.data or {})
    errors = dict(data.get("error") or {})
    if outcome.error:
        errors[outcome.channel] = outcome.error
    elif outcome.succeeded:
        errors.pop(outcome.channel, None)
    if errors:
        data["error"] = errors
    else:
        data.pop("error", None)
    notification.data = data


class ChannelDispatcher:
    """Dispatch rendered notifications to channel backends.

    Holds one backend per channel:
    - email: direct address through the configured email provider
    - sms: phone number through the configured SMS provider
    - push: device tokens, plus topic broadcast
    - in_app: live registry push, the stored row is the inbox entry

    The dispatcher never touches the database; it updates the notification
    object in memory and the caller flushes.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        backends: dict[str, ChannelBackend] | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self._settings = settings or get_notification_settings()
        self._renderer = renderer or get_template_renderer()
        self._channels: dict[str, ChannelBackend] = (
            backends if backends is not None else self._build_backends(self._settings)
        )

    @staticmethod
    def _build_backends(settings: NotificationSettings) -> dict[str, ChannelBackend]:
        backends: dict[str, ChannelBackend] = {}
        builders = {
            ChannelType.EMAIL.value: lambda: EmailChannel(build_email_provider(settings)),
            ChannelType.SMS.value: lambda: SmsChannel(build_sms_provider(settings)),
            ChannelType.PUSH.value: lambda: PushChannel(build_push_provider(settings)),
            ChannelType.IN_APP.value: lambda: InAppChannel(broadcast_to_user),
        }
        for channel, build in builders.items():
            try:
                backends[channel] = build()
            except ValueError as e:
                # Misconfigured provider leaves the channel unavailable
                logger.error(
                    "Channel backend could not be initialised",
                    extra={"channel": channel, "error": str(e)},
                )
        return backends

    def _enabled_in_config(self, channel: str) -> bool:
        return bool(getattr(self._settings, f"{channel}_enabled", False))

    def is_available(self, channel: str) -> bool:
        """Channel is enabled in configuration and its backend initialised."""
        return self._enabled_in_config(channel) and channel in self._channels

    def available_channels(self) -> list[str]:
        return [c.value for c in ChannelType if self.is_available(c.value)]

    async def send(
        self,
        notification: Notification,
        template: NotificationTemplate,
        channel: str,
        contact: dict[str, Any] | None = None,
    ) -> bool:
        """Send a notification over one channel.

        Returns True when the channel reported SENT or DELIVERED. Never
        raises for delivery problems.
        """
        outcome = await self.dispatch(notification, template, channel, contact)
        return outcome.succeeded

    async def dispatch(
        self,
        notification: Notification,
        template: NotificationTemplate,
        channel: str,
        contact: dict[str, Any] | None = None,
    ) -> ChannelOutcome:
        """Send over one channel and return the detailed outcome."""
        log_extra = {"notification_id": str(notification.id), "channel": channel}

        if not self.is_available(channel):
            logger.warning("Channel unavailable, not dispatching", extra=log_extra)
            notification_delivered_total.labels(channel=channel, status="unavailable").inc()
            return ChannelOutcome(
                channel=channel,
                status=NotificationStatus.SKIPPED,
                error="Channel unavailable",
                applied=False,
            )

        backend = self._channels[channel]
        recipient = backend.extract_recipient(contact or {}, notification)
        if not recipient:
            logger.info("No valid recipient for channel, skipping", extra=log_extra)
            outcome = ChannelOutcome(
                channel=channel,
                status=NotificationStatus.SKIPPED,
                error=f"No valid {channel} recipient",
            )
            return self._record(notification, outcome)

        try:
            content = self._renderer.render_template(template, notification.data or {})
        except TemplateRenderError as e:
            logger.warning("Template rendering failed", extra={**log_extra, "error": str(e)})
            return self._record(notification, ChannelOutcome(channel, NotificationStatus.FAILED, error=str(e)))

        started = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(
                backend.deliver(content, recipient, notification),
                timeout=self._settings.delivery_timeout,
            )
        except TimeoutError:
            logger.warning(
                "Channel delivery timed out",
                extra={**log_extra, "timeout": self._settings.delivery_timeout},
            )
            outcome = ChannelOutcome(
                channel,
                NotificationStatus.FAILED,
                error=f"Delivery timed out after {self._settings.delivery_timeout}s",
            )
        except Exception as e:
            logger.exception("Exception dispatching notification", extra={**log_extra, "error": str(e)})
            outcome = ChannelOutcome(channel, NotificationStatus.FAILED, error=str(e) or type(e).__name__)
        finally:
            notification_delivery_duration_seconds.labels(channel=channel).observe(
                time.perf_counter() - started
            )

        if outcome.succeeded:
            logger.info(
                "Notification dispatched",
                extra={**log_extra, "status": outcome.status.value, "provider_ids": list(outcome.provider_message_ids)},
            )
        else:
            logger.warning(
                "Notification delivery failed",
                extra={**log_extra, "status": outcome.status.value, "error": outcome.error},
            )
        return self._record(notification, outcome)

    async def send_to_topic(
        self,
        topic: str,
        template: NotificationTemplate,
        data: dict[str, Any],
    ) -> bool:
        """Broadcast to a push topic.

        Acceptance by the broadcast backend is the only confirmation, so a
        topic send never counts as delivered.
        """
        if not topic or not topic.strip():
            logger.warning("Topic send rejected: empty topic")
            return False
        channel = ChannelType.PUSH.value
        if not self.is_available(channel):
            logger.warning("Push channel unavailable, topic send skipped", extra={"topic": topic})
            notification_topic_sent_total.labels(status="unavailable").inc()
            return False

        backend = self._channels[channel]
        if not isinstance(backend, PushChannel):
            return False

        try:
            content = self._renderer.render_template(template, data)
            result = await asyncio.wait_for(
                backend.send_to_topic(content, topic.strip()),
                timeout=self._settings.delivery_timeout,
            )
        except TemplateRenderError as e:
            logger.warning("Topic template rendering failed", extra={"topic": topic, "error": str(e)})
            notification_topic_sent_total.labels(status="failed").inc()
            return False
        except TimeoutError:
            logger.warning("Topic send timed out", extra={"topic": topic})
            notification_topic_sent_total.labels(status="failed").inc()
            return False
        except Exception as e:
            logger.exception("Exception sending to topic", extra={"topic": topic, "error": str(e)})
            notification_topic_sent_total.labels(status="failed").inc()
            return False

        status = "sent" if result.accepted else "failed"
        notification_topic_sent_total.labels(status=status).inc()
        if not result.accepted:
            logger.warning("Topic send rejected", extra={"topic": topic, "error": result.error})
        return result.accepted

    @staticmethod
    def _record(notification: Notification, outcome: ChannelOutcome) -> ChannelOutcome:
        apply_outcome(notification, outcome)
        notification_delivered_total.labels(channel=outcome.channel, status=outcome.status.value).inc()
        return outcome


_dispatcher: ChannelDispatcher | None = None


def get_channel_dispatcher() -> ChannelDispatcher:
    """Get or create the singleton ChannelDispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ChannelDispatcher()
    return _dispatcher


def reset_channel_dispatcher() -> None:
    """Drop the singleton so the next call rebuilds it from settings."""
    global _dispatcher
    _dispatcher = None
