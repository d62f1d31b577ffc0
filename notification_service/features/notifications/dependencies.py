"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases for dependency injection in route handlers.

Example usage:
    @router.get("/notifications/unread-count")
    async def unread_count(
        user_id: str,
        session: SessionDep,
        service: NotificationServiceDep,
    ) -> UnreadCountResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from notification_service.core.dependencies.database import SessionDep
from notification_service.features.notifications.events import (
    SystemEventHandler,
    get_system_event_handler,
)
from notification_service.features.notifications.preferences import (
    PreferenceResolver,
    get_preference_resolver,
)
from notification_service.features.notifications.service import (
    NotificationService,
    get_notification_service,
)
from notification_service.features.notifications.templates.service import (
    TemplateService,
    get_template_service,
)

NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
PreferenceResolverDep = Annotated[PreferenceResolver, Depends(get_preference_resolver)]
TemplateServiceDep = Annotated[TemplateService, Depends(get_template_service)]
SystemEventHandlerDep = Annotated[SystemEventHandler, Depends(get_system_event_handler)]

__all__ = [
    "NotificationServiceDep",
    "PreferenceResolverDep",
    "SessionDep",
    "SystemEventHandlerDep",
    "TemplateServiceDep",
]
