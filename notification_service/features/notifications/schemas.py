"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from notification_service.features.notifications.enums import (
    SUPPORTED_LOCALES,
    ChannelType,
    FrequencyType,
    NotificationKind,
    NotificationStatus,
    Priority,
)
from notification_service.features.notifications.events import SystemEventType


def _check_locale(value: str | None) -> str | None:
    if value is not None and value not in SUPPORTED_LOCALES:
        msg = f"Unsupported locale {value!r}, expected one of {', '.join(SUPPORTED_LOCALES)}"
        raise ValueError(msg)
    return value


Locale = Annotated[str, AfterValidator(_check_locale)]


# ============================================================================
# Notification Schemas
# ============================================================================


class RecipientContact(BaseModel):
    """Contact details for external channels."""

    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=32, description="E.164 phone number")
    device_tokens: list[str] = Field(default_factory=list, description="Push device tokens")


class NotificationBase(BaseModel):
    """Shared attributes for notification payloads."""

    user_id: str = Field(..., min_length=1, max_length=255)
    user_type: str = Field(..., min_length=1, max_length=50, description="driver, carrier, shipper, admin, ...")
    kind: NotificationKind
    priority: Priority = Priority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict, description="Template variables")
    reference_id: str | None = Field(default=None, max_length=255)
    reference_type: str | None = Field(default=None, max_length=100)


class NotificationCreate(NotificationBase):
    """Payload for storing a notification without dispatch."""

    channel: ChannelType | None = None
    content: dict[str, Any] = Field(default_factory=dict)


class NotificationSend(NotificationBase):
    """Payload for an immediate send."""

    channels: list[ChannelType] | None = Field(
        default=None,
        description="Explicit channels; overrides the user's preference",
    )
    template_id: UUID | None = None
    locale: Locale | None = None
    recipient: RecipientContact | None = None


class NotificationSchedule(NotificationSend):
    """Payload for a deferred send."""

    scheduled_for: datetime = Field(..., description="UTC when naive")


class BulkRecipient(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    user_type: str = Field(..., min_length=1, max_length=50)
    recipient: RecipientContact | None = None


class NotificationBulkSend(BaseModel):
    """Payload for sending one notification to many recipients."""

    recipients: list[BulkRecipient] = Field(..., min_length=1, max_length=1000)
    kind: NotificationKind
    priority: Priority = Priority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict)
    channels: list[ChannelType] | None = None
    template_id: UUID | None = None
    locale: Locale | None = None


class TopicSend(BaseModel):
    topic: str = Field(..., min_length=1, max_length=255)
    kind: NotificationKind
    data: dict[str, Any] = Field(default_factory=dict)
    locale: Locale | None = None


class NotificationResponse(BaseModel):
    """Representation of a notification returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    user_type: str
    kind: str
    channel: str
    template_id: str | None = None
    content: dict[str, Any]
    data: dict[str, Any]
    status: NotificationStatus
    priority: Priority
    read: bool
    reference_id: str | None = None
    reference_type: str | None = None
    scheduled_for: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class SendResponse(BaseModel):
    """Send result with the per-channel outcome map."""

    notification: NotificationResponse
    outcomes: dict[str, NotificationStatus]
    succeeded: bool


class BulkSendResponse(BaseModel):
    success_count: int
    failed_count: int
    notification_ids: list[UUID]
    errors: dict[str, str] = Field(default_factory=dict)


class TopicSendResponse(BaseModel):
    topic: str
    sent: bool


class NotificationListResponse(BaseModel):
    """Paginated notification listing."""

    items: list[NotificationResponse]
    total: int
    page: int
    limit: int
    unread_count: int


class UnreadCountResponse(BaseModel):
    user_id: str
    count: int


class MarkAllReadResponse(BaseModel):
    user_id: str
    updated: int


class StatisticsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_channel: dict[str, int]
    by_kind: dict[str, int]
    delivery_success_rate: float
    read_rate: float
    average_delivery_seconds: float | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class SystemEventRequest(BaseModel):
    """A platform event to turn into admin alerts.

    ``payload`` follows the producer's field names (``serviceName``,
    ``errorCode``, ``status``, ``serviceOwners``...).
    """

    type: SystemEventType
    payload: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Preference Schemas
# ============================================================================


class Frequency(BaseModel):
    type: FrequencyType = FrequencyType.IMMEDIATE
    max_per_day: int = Field(default=100, ge=0)


class TimeWindow(BaseModel):
    """Quiet-hours window; ``start`` later than ``end`` wraps midnight."""

    start: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    timezone: str = Field(..., min_length=1, description="IANA timezone name")


class PreferenceCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    user_type: str = Field(..., min_length=1, max_length=50)
    kind: NotificationKind
    channels: list[ChannelType] | None = None
    enabled: bool = True
    frequency: Frequency | None = None
    time_window: TimeWindow | None = None


class PreferenceUpdate(BaseModel):
    channels: list[ChannelType] | None = None
    enabled: bool | None = None
    frequency: Frequency | None = None
    time_window: TimeWindow | None = None


class PreferenceTarget(BaseModel):
    """Identifies one preference row by its natural key."""

    user_id: str = Field(..., min_length=1, max_length=255)
    user_type: str = Field(..., min_length=1, max_length=50)
    kind: NotificationKind


class PreferenceEnabledUpdate(PreferenceTarget):
    enabled: bool


class PreferenceChannelsUpdate(PreferenceTarget):
    channels: list[ChannelType]


class PreferenceFrequencyUpdate(PreferenceTarget):
    frequency: Frequency


class PreferenceTimeWindowUpdate(PreferenceTarget):
    time_window: TimeWindow | None = None


class PreferenceDefaultsRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    user_type: str = Field(..., min_length=1, max_length=50)


class PreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    user_type: str
    kind: str
    channels: list[str]
    enabled: bool
    frequency: dict[str, Any]
    time_window: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class PreferenceListResponse(BaseModel):
    items: list[PreferenceResponse]
    total: int


# ============================================================================
# Template Schemas
# ============================================================================


class TemplateCreate(BaseModel):
    """Payload for creating a notification template."""

    name: str = Field(..., min_length=1, max_length=150)
    kind: NotificationKind
    channel: ChannelType
    locale: Locale = "en_US"
    content: dict[str, Any] = Field(..., description="Channel-shaped content with Jinja2 placeholders")
    variables: list[str] = Field(default_factory=list, description="Variables that must be supplied")
    description: str | None = Field(default=None, max_length=500)
    is_default: bool = False
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=150)
    content: dict[str, Any] | None = None
    variables: list[str] | None = None
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    kind: str
    channel: str
    locale: str
    content: dict[str, Any]
    variables: list[str]
    description: str | None = None
    is_default: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TemplateListResponse(BaseModel):
    items: list[TemplateResponse]
    total: int


class TemplateRenderRequest(BaseModel):
    template_id: UUID
    data: dict[str, Any] = Field(default_factory=dict)


class TemplateRenderResponse(BaseModel):
    template_id: UUID
    content: dict[str, Any]


class TemplateDefaultsRequest(BaseModel):
    locale: Locale = "en_US"


SortDirection = Literal["asc", "desc"]
