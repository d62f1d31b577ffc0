"""System event intake.

Platform services report errors, warnings, informational events and
status changes here; each becomes a ``system_alert`` notification for the
configured admins plus the owners named on the event.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from notification_service.core.exceptions import ValidationException
from notification_service.core.services.base import BaseService
from notification_service.core.settings import get_notification_settings
from notification_service.features.notifications.enums import NotificationKind, Priority
from notification_service.features.notifications.service import (
    BulkResult,
    NotificationService,
    get_notification_service,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.settings.notifications import NotificationSettings

ADMIN_USER_TYPE = "admin"


class SystemEventType(str, Enum):
    SYSTEM_ERROR = "SYSTEM_ERROR"
    SYSTEM_WARNING = "SYSTEM_WARNING"
    SYSTEM_INFO = "SYSTEM_INFO"
    SERVICE_STATUS_CHANGED = "SERVICE_STATUS_CHANGED"


_FIXED_PRIORITY = {
    SystemEventType.SYSTEM_ERROR: Priority.HIGH,
    SystemEventType.SYSTEM_WARNING: Priority.MEDIUM,
    SystemEventType.SYSTEM_INFO: Priority.LOW,
}

_STATUS_PRIORITY = {
    "down": Priority.HIGH,
    "degraded": Priority.MEDIUM,
}


def event_priority(event_type: SystemEventType, payload: dict[str, Any]) -> Priority:
    if event_type is SystemEventType.SERVICE_STATUS_CHANGED:
        return _STATUS_PRIORITY.get(str(payload.get("status", "")).lower(), Priority.LOW)
    return _FIXED_PRIORITY[event_type]


def event_template_data(event_type: SystemEventType, payload: dict[str, Any]) -> dict[str, Any]:
    """Template variables for a system alert; always carries title and message."""
    service_name = payload.get("serviceName") or "unknown-service"
    data: dict[str, Any] = {
        "eventType": event_type.value,
        "serviceName": service_name,
        "timestamp": payload.get("timestamp"),
        "context": payload.get("context") or {},
    }

    if event_type is SystemEventType.SYSTEM_ERROR:
        data.update(
            title=f"System error in {service_name}",
            message=payload.get("message") or "An error was reported",
            errorCode=payload.get("errorCode"),
            severity=payload.get("severity"),
            stackTrace=payload.get("stackTrace"),
        )
    elif event_type is SystemEventType.SYSTEM_WARNING:
        data.update(
            title=f"System warning in {service_name}",
            message=payload.get("message") or "A warning was reported",
            warningCode=payload.get("warningCode"),
        )
    elif event_type is SystemEventType.SYSTEM_INFO:
        data.update(
            title=f"{service_name} notice",
            message=payload.get("message") or "",
            infoCode=payload.get("infoCode"),
        )
    else:
        status = payload.get("status") or "unknown"
        data.update(
            title=f"{service_name} is {status}",
            message=payload.get("reason") or f"Status changed from {payload.get('previousStatus')} to {status}",
            status=status,
            previousStatus=payload.get("previousStatus"),
            reason=payload.get("reason"),
            affectedComponents=payload.get("affectedComponents") or [],
            estimatedResolutionTime=payload.get("estimatedResolutionTime"),
        )
    return data


class SystemEventHandler(BaseService):
    """Turn system events into admin alerts."""

    def __init__(
        self,
        notifications: NotificationService | None = None,
        settings: NotificationSettings | None = None,
    ) -> None:
        super().__init__()
        self._notifications = notifications or get_notification_service()
        self._settings = settings or get_notification_settings()

    def recipients_for(self, payload: dict[str, Any]) -> list[str]:
        """Configured admins followed by the event's owners, deduplicated."""
        owners = payload.get("serviceOwners") or []
        return list(dict.fromkeys([*self._settings.admin_recipients, *(str(o) for o in owners)]))

    async def handle(self, session: AsyncSession, event_type: str, payload: dict[str, Any]) -> BulkResult:
        """Fan a system event out to its recipients.

        Raises:
            ValidationException: Unknown event type
        """
        try:
            kind = SystemEventType(event_type)
        except ValueError:
            raise ValidationException(
                detail=f"Unknown system event type: {event_type}",
                extra={"event_type": event_type},
            ) from None

        recipients = self.recipients_for(payload)
        if not recipients:
            self.logger.warning(
                "System event has no recipients",
                extra={"event_type": kind.value, "service_name": payload.get("serviceName")},
            )
            return BulkResult()

        priority = event_priority(kind, payload)
        self.logger.info(
            "Handling system event",
            extra={
                "event_type": kind.value,
                "service_name": payload.get("serviceName"),
                "priority": priority.value,
                "recipients": len(recipients),
            },
        )
        return await self._notifications.send_bulk(
            session,
            [{"user_id": r, "user_type": ADMIN_USER_TYPE} for r in recipients],
            {
                "kind": NotificationKind.SYSTEM_ALERT.value,
                "priority": priority.value,
                "data": event_template_data(kind, payload),
                "reference_id": payload.get("serviceName"),
                "reference_type": "service",
            },
        )


_handler: SystemEventHandler | None = None


def get_system_event_handler() -> SystemEventHandler:
    global _handler
    if _handler is None:
        _handler = SystemEventHandler()
    return _handler
