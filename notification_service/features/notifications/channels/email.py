"""Email channel backend."""

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

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class EmailChannel:
    """Direct-address email delivery through an outbound provider."""

    channel = ChannelType.EMAIL

    def __init__(self, provider: OutboundProvider) -> None:
        self.provider = provider

    def extract_recipient(self, contact: dict[str, Any], notification: Notification) -> str | None:
        address = contact.get("email")
        if isinstance(address, str) and _EMAIL.match(address.strip()):
            return address.strip()
        return None

    async def deliver(
        self,
        content: dict[str, Any],
        recipient: str,
        notification: Notification,
    ) -> ChannelOutcome:
        result = await self.provider.send(content, recipient)
        return ChannelOutcome.from_provider(self.channel.value, result)
