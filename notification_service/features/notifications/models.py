"""Database models for notifications, preferences and templates."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import JSONType, StringArray, TimestampedBase
from notification_service.features.notifications.enums import (
    DEFAULT_LOCALE,
    NotificationStatus,
    Priority,
)


class Notification(TimestampedBase):
    """One delivery attempt record.

    A notification is created PENDING, then moved forward by the dispatcher
    as channels report back. Scheduled notifications carry ``scheduled_for``
    and empty content until the scheduler tick that renders and sends them.

    Indexes:
        - (user_id, read) for unread counts and inbox listings
        - (status, scheduled_for) for the scheduler poll
    """

    __tablename__ = "notifications"

    # Recipient
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Recipient user identifier",
    )
    user_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Recipient role tag (driver, carrier, shipper, admin, ...)",
    )

    # Type and content
    kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Notification kind",
    )
    channel: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Primary channel (first resolved channel)",
    )
    template_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Template used for rendering",
    )
    content: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Channel-shaped rendered payload",
    )
    data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Arbitrary context: template variables, error, retry_count, channels",
    )

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(20),
        default=NotificationStatus.PENDING.value,
        nullable=False,
        comment="pending, sent, delivered, failed, cancelled, skipped",
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        default=Priority.MEDIUM.value,
        nullable=False,
        comment="high, medium, low",
    )
    read: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)

    # Source tracking
    reference_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Identifier of the originating domain object",
    )
    reference_type: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Type of the originating domain object",
    )

    # Timing
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read"),
        Index("idx_notification_status_scheduled", "status", "scheduled_for"),
    )

    @property
    def retry_count(self) -> int:
        return int((self.data or {}).get("retry_count", 0))

    def to_payload(self) -> dict[str, Any]:
        """JSON-friendly representation pushed over live connections."""
        return {
            "id": str(self.id),
            "userId": self.user_id,
            "userType": self.user_type,
            "kind": self.kind,
            "channel": self.channel,
            "content": self.content,
            "data": self.data,
            "status": self.status,
            "priority": self.priority,
            "read": self.read,
            "referenceId": self.reference_id,
            "referenceType": self.reference_type,
            "scheduledFor": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "sentAt": self.sent_at.isoformat() if self.sent_at else None,
            "deliveredAt": self.delivered_at.isoformat() if self.delivered_at else None,
            "readAt": self.read_at.isoformat() if self.read_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class NotificationPreference(TimestampedBase):
    """Per user, per role, per kind delivery preferences.

    ``frequency`` holds ``{"type": ..., "max_per_day": ...}``; ``time_window``
    holds ``{"start": "HH:MM", "end": "HH:MM", "timezone": "..."}`` or null.

    Unique constraint: (user_id, user_type, kind)
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_type: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Enabled delivery channels",
    )
    enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    frequency: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    time_window: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "user_type", "kind", name="uq_preference_user_type_kind"),
    )


class NotificationTemplate(TimestampedBase):
    """Content definition for one (kind, channel, locale).

    At most one template per tuple has ``is_default`` set; promotion runs
    in a single transaction that clears the previous default first.
    """

    __tablename__ = "notification_templates"

    name: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    locale: Mapped[str] = mapped_column(String(10), nullable=False, default=DEFAULT_LOCALE)
    content: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Channel-shaped content with Jinja2 placeholders",
    )
    variables: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Declared placeholder names required for rendering",
    )
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)

    __table_args__ = (
        Index("idx_template_lookup", "kind", "channel", "locale", "is_default"),
    )
