"""Enumerations shared by the notification feature."""

from __future__ import annotations

from enum import Enum


class NotificationKind(str, Enum):
    """Semantic category of a notification event."""

    LOAD_OPPORTUNITY = "load_opportunity"
    LOAD_STATUS = "load_status"
    DRIVER_STATUS = "driver_status"
    ACHIEVEMENT = "achievement"
    SYSTEM_ALERT = "system_alert"
    PAYMENT = "payment"
    MARKET_INTELLIGENCE = "market_intelligence"
    BONUS_ZONE = "bonus_zone"


class ChannelType(str, Enum):
    """Delivery medium."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class NotificationStatus(str, Enum):
    """Delivery state of a notification record."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FrequencyType(str, Enum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


SUPPORTED_LOCALES = ("en_US", "es_US", "fr_CA")
DEFAULT_LOCALE = "en_US"

# Live-push channel added for high priority notifications
LIVE_PUSH_CHANNEL = ChannelType.PUSH

# Status only ever moves up this ladder; cancelled is terminal and handled apart.
STATUS_RANK: dict[NotificationStatus, int] = {
    NotificationStatus.PENDING: 0,
    NotificationStatus.SKIPPED: 1,
    NotificationStatus.FAILED: 2,
    NotificationStatus.SENT: 3,
    NotificationStatus.DELIVERED: 4,
}


def is_valid(enum_cls: type[Enum], value: object) -> bool:
    """Return True when value is a member (or member value) of enum_cls."""
    if isinstance(value, enum_cls):
        return True
    return any(member.value == value for member in enum_cls)
