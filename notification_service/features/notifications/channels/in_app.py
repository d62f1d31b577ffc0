"""In-app channel backend backed by the live delivery registry."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from notification_service.features.notifications.channels.base import ChannelOutcome
from notification_service.features.notifications.enums import ChannelType, NotificationStatus

if TYPE_CHECKING:
    from notification_service.features.notifications.models import Notification

Broadcaster = Callable[[str, dict[str, Any]], Awaitable[bool]]


class InAppChannel:
    """In-app delivery.

    The stored notification row is the inbox entry, so the channel always
    succeeds. When the user has a live connection the payload is pushed
    over it and the outcome is DELIVERED; otherwise SENT.
    """

    channel = ChannelType.IN_APP

    def __init__(self, broadcaster: Broadcaster) -> None:
        self._broadcast = broadcaster

    def extract_recipient(self, contact: dict[str, Any], notification: Notification) -> str | None:
        return notification.user_id or None

    async def deliver(
        self,
        content: dict[str, Any],
        recipient: str,
        notification: Notification,
    ) -> ChannelOutcome:
        payload = {**notification.to_payload(), "channel": self.channel.value, "content": content}
        pushed = await self._broadcast(recipient, payload)
        status = NotificationStatus.DELIVERED if pushed else NotificationStatus.SENT
        return ChannelOutcome(self.channel.value, status)
