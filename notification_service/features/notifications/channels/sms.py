"""SMS channel backend."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from notification_service.features.notifications.channels.base import (
    ChannelOutcome,
    OutboundProvider,
)
from notification_service.features.notifications.enums import ChannelType

if TYPE_CHECKING:
    from notification_service.features.notifications.models import Notification

# E.164 after stripping spaces, dashes and parentheses
_PHONE = re.compile(r"^\+?[1-9]\d{6,14}$")
_SEPARATORS = re.compile(r"[\s\-().]")


class SmsChannel:
    """Text message delivery through an outbound provider."""

    channel = ChannelType.SMS

    def __init__(self, provider: OutboundProvider) -> None:
        self.provider = provider

    def extract_recipient(self, contact: dict[str, Any], notification: Notification) -> str | None:
        phone = contact.get("phone")
        if not isinstance(phone, str):
            return None
        normalized = _SEPARATORS.sub("", phone)
        return normalized if _PHONE.match(normalized) else None

    async def deliver(
        self,
        content: dict[str, Any],
        recipient: str,
        notification: Notification,
    ) -> ChannelOutcome:
        result = await self.provider.send(content, recipient)
        return ChannelOutcome.from_provider(self.channel.value, result)
