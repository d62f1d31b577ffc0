"""Mobile push channel backend."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from notification_service.features.notifications.channels.base import (
    ChannelOutcome,
    ProviderResult,
    TopicProvider,
)
from notification_service.features.notifications.enums import ChannelType, NotificationStatus

if TYPE_CHECKING:
    from notification_service.features.notifications.models import Notification


class PushChannel:
    """Device-token push delivery plus topic broadcast.

    A notification is sent to every device token of the recipient. All
    tokens accepted maps to DELIVERED, some accepted to SENT and none to
    FAILED.
    """

    channel = ChannelType.PUSH

    def __init__(self, provider: TopicProvider) -> None:
        self.provider = provider

    def extract_recipient(self, contact: dict[str, Any], notification: Notification) -> list[str] | None:
        tokens = contact.get("device_tokens", contact.get("deviceTokens"))
        if isinstance(tokens, str):
            tokens = [tokens]
        if not isinstance(tokens, list):
            return None
        valid = [t.strip() for t in tokens if isinstance(t, str) and t.strip()]
        return list(dict.fromkeys(valid)) or None

    async def deliver(
        self,
        content: dict[str, Any],
        recipient: list[str],
        notification: Notification,
    ) -> ChannelOutcome:
        message = {**content, "data": {"notificationId": str(notification.id), "kind": notification.kind}}
        raw = await asyncio.gather(
            *(self.provider.send(message, token) for token in recipient),
            return_exceptions=True,
        )
        # A token whose call raised counts as rejected; the others still stand
        results: list[ProviderResult] = []
        for item in raw:
            if isinstance(item, Exception):
                results.append(ProviderResult.failed(str(item) or type(item).__name__))
            elif isinstance(item, BaseException):
                raise item
            else:
                results.append(item)
        accepted = [r for r in results if r.accepted]
        ids = tuple(r.provider_message_id for r in accepted if r.provider_message_id)

        if accepted and len(accepted) == len(results):
            return ChannelOutcome(self.channel.value, NotificationStatus.DELIVERED, provider_message_ids=ids)
        if accepted:
            return ChannelOutcome(self.channel.value, NotificationStatus.SENT, provider_message_ids=ids)

        errors = "; ".join(sorted({r.error or "rejected" for r in results}))
        return ChannelOutcome(self.channel.value, NotificationStatus.FAILED, error=errors)

    async def send_to_topic(self, content: dict[str, Any], topic: str) -> ProviderResult:
        return await self.provider.send_to_topic(content, topic)
