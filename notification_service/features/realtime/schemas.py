"""Pydantic schemas for live notification frames.

Message Types:
- Client → Server: getNotifications, markAsRead, markAllAsRead, pong
- Server → Client: unreadCount, notification, notificationsList, ping, error
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ClientMessageType(str, Enum):
    """Message types sent from client to server."""

    GET_NOTIFICATIONS = "getNotifications"
    MARK_AS_READ = "markAsRead"
    MARK_ALL_AS_READ = "markAllAsRead"
    PONG = "pong"


class ServerMessageType(str, Enum):
    """Message types sent from server to client."""

    UNREAD_COUNT = "unreadCount"
    NOTIFICATION = "notification"
    NOTIFICATIONS_LIST = "notificationsList"
    PING = "ping"
    ERROR = "error"


# ──────────────────────────────────────────────────────────────
# Client → Server Messages
# ──────────────────────────────────────────────────────────────


class ClientEnvelope(BaseModel):
    """Inbound frame: ``{"type": ..., "data": {...}}``."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class GetNotificationsData(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1, le=100)
    read: bool | None = None


class MarkAsReadData(BaseModel):
    notification_id: str = Field(..., alias="notificationId", min_length=1)


# ──────────────────────────────────────────────────────────────
# Server → Client Messages
# ──────────────────────────────────────────────────────────────


class NotificationsListMessage(BaseModel):
    type: Literal[ServerMessageType.NOTIFICATIONS_LIST] = ServerMessageType.NOTIFICATIONS_LIST
    notifications: list[dict[str, Any]]
    total: int
    page: int


class ErrorMessage(BaseModel):
    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: str
    message: str


class ConnectionStats(BaseModel):
    """Registry statistics."""

    total_connections: int
    users: int
    user_types: dict[str, int]
