"""Channel backends and the dispatcher that drives them.

Channels form a closed set: email, sms, push and in_app. Each backend
extracts its own recipient token from the contact data and maps its
provider's answer to DELIVERED, SENT or FAILED.
"""

from __future__ import annotations

from notification_service.features.notifications.channels.base import (
    ChannelBackend,
    ChannelOutcome,
    OutboundProvider,
    ProviderResult,
    TopicProvider,
)
from notification_service.features.notifications.channels.dispatcher import (
    ChannelDispatcher,
    apply_outcome,
    get_channel_dispatcher,
    reset_channel_dispatcher,
)
from notification_service.features.notifications.channels.email import EmailChannel
from notification_service.features.notifications.channels.in_app import InAppChannel
from notification_service.features.notifications.channels.push import PushChannel
from notification_service.features.notifications.channels.sms import SmsChannel

__all__ = [
    "ChannelBackend",
    "ChannelDispatcher",
    "ChannelOutcome",
    "EmailChannel",
    "InAppChannel",
    "OutboundProvider",
    "ProviderResult",
    "PushChannel",
    "SmsChannel",
    "TopicProvider",
    "apply_outcome",
    "get_channel_dispatcher",
    "reset_channel_dispatcher",
]
