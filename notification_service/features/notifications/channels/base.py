"""Base protocols and result types for channel backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

from notification_service.features.notifications.enums import ChannelType, NotificationStatus

if TYPE_CHECKING:
    from notification_service.features.notifications.models import Notification

ProviderStatus = Literal["delivered", "sent", "failed"]


@dataclass(frozen=True, slots=True)
class ProviderResult:
    """Outcome reported by an outbound provider for one recipient.

    Attributes:
        status: delivered, sent (accepted, not confirmed) or failed
        provider_message_id: Provider-assigned id for tracking
        error: Error description when failed
    """

    status: ProviderStatus
    provider_message_id: str | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status != "failed"

    @classmethod
    def failed(cls, error: str) -> ProviderResult:
        return cls(status="failed", error=error)


@dataclass(frozen=True, slots=True)
class ChannelOutcome:
    """Result of one channel attempt for one notification.

    Attributes:
        channel: Channel the attempt was made on
        status: Status the attempt maps to (DELIVERED, SENT, FAILED or SKIPPED)
        error: Channel-specific error text
        provider_message_ids: Ids returned by the provider, one per accepted recipient
        applied: False when the attempt never reached the notification (channel unavailable)
    """

    channel: str
    status: NotificationStatus
    error: str | None = None
    provider_message_ids: tuple[str, ...] = ()
    applied: bool = True

    @property
    def succeeded(self) -> bool:
        return self.status in (NotificationStatus.SENT, NotificationStatus.DELIVERED)

    @classmethod
    def from_provider(cls, channel: str, result: ProviderResult) -> ChannelOutcome:
        status = {
            "delivered": NotificationStatus.DELIVERED,
            "sent": NotificationStatus.SENT,
        }.get(result.status, NotificationStatus.FAILED)
        return cls(
            channel=channel,
            status=status,
            error=result.error if status is NotificationStatus.FAILED else None,
            provider_message_ids=(result.provider_message_id,) if result.provider_message_id else (),
        )


class OutboundProvider(Protocol):
    """Capability interface of an external delivery provider."""

    @property
    def provider_name(self) -> str: ...

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        """Send a rendered message to one recipient token."""
        ...


class TopicProvider(OutboundProvider, Protocol):
    """Provider that can broadcast to a named topic."""

    async def send_to_topic(self, message: dict[str, Any], topic: str) -> ProviderResult: ...


class ChannelBackend(Protocol):
    """Protocol for channel backends.

    Each channel (email, sms, push, in_app) implements this protocol so the
    dispatcher can treat them uniformly.
    """

    channel: ChannelType

    def extract_recipient(
        self,
        contact: dict[str, Any],
        notification: Notification,
    ) -> Any | None:
        """Channel-specific recipient token, or None when missing or malformed."""
        ...

    async def deliver(
        self,
        content: dict[str, Any],
        recipient: Any,
        notification: Notification,
    ) -> ChannelOutcome:
        """Send rendered content to the extracted recipient."""
        ...
