"""API routers for the notifications feature.

Notification Endpoints:
- POST /notifications - Store a notification without dispatch
- GET /notifications - List a user's notifications
- GET /notifications/unread-count - Unread count for a user
- POST /notifications/mark-all-read - Mark every notification of a user read
- POST /notifications/send - Resolve channels and dispatch now
- POST /notifications/send-bulk - Same notification to many recipients
- POST /notifications/send-topic - Broadcast to a push topic
- POST /notifications/schedule - Deferred send
- GET /notifications/statistics - Aggregate delivery statistics
- POST /notifications/events - System events turned into admin alerts
- GET /notifications/jobs - Background job schedule
- GET /notifications/{id} - Single notification
- POST /notifications/{id}/mark-read - Mark as read
- POST /notifications/{id}/cancel - Cancel a scheduled notification
- DELETE /notifications/{id} - Delete

Preference Endpoints (under /notifications/preferences) and Template
Endpoints (under /notifications/templates) are registered on their own
routers, ahead of the notification router so their static paths win over
``/{id}``.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from notification_service.features.notifications.dependencies import (
    NotificationServiceDep,
    PreferenceResolverDep,
    SessionDep,
    SystemEventHandlerDep,
    TemplateServiceDep,
)
from notification_service.features.notifications.enums import (
    ChannelType,
    NotificationKind,
    NotificationStatus,
)
from notification_service.features.notifications.schemas import (
    BulkSendResponse,
    MarkAllReadResponse,
    NotificationBulkSend,
    NotificationCreate,
    NotificationListResponse,
    NotificationResponse,
    NotificationSchedule,
    NotificationSend,
    PreferenceChannelsUpdate,
    PreferenceCreate,
    PreferenceDefaultsRequest,
    PreferenceEnabledUpdate,
    PreferenceFrequencyUpdate,
    PreferenceListResponse,
    PreferenceResponse,
    PreferenceTimeWindowUpdate,
    PreferenceUpdate,
    SendResponse,
    SortDirection,
    StatisticsResponse,
    SystemEventRequest,
    TemplateCreate,
    TemplateDefaultsRequest,
    TemplateListResponse,
    TemplateRenderRequest,
    TemplateRenderResponse,
    TemplateResponse,
    TemplateUpdate,
    TopicSend,
    TopicSendResponse,
    UnreadCountResponse,
)
from notification_service.infra.tasks import get_job_status

if TYPE_CHECKING:
    from notification_service.features.notifications.service import SendResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])
preferences_router = APIRouter(prefix="/notifications/preferences", tags=["notification-preferences"])
templates_router = APIRouter(prefix="/notifications/templates", tags=["notification-templates"])


def _send_response(result: SendResult) -> SendResponse:
    return SendResponse(
        notification=NotificationResponse.model_validate(result.notification),
        outcomes=result.outcomes,
        succeeded=result.succeeded,
    )


# ============================================================================
# Notifications
# ============================================================================


@router.post(
    "",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store a notification without dispatching it",
)
async def create_notification(
    body: NotificationCreate,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    notification = await service.create(session, body.model_dump(mode="json", exclude_none=True))
    await session.commit()
    return NotificationResponse.model_validate(notification)


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List a user's notifications",
    description="""
List notifications for one user, newest first by default.

**Filters:** `read`, `kind`, `channel`, `status`, `start_date`, `end_date`.
**Pagination:** `page` (1-based) and `limit` (1-100).
""",
)
async def list_notifications(
    session: SessionDep,
    service: NotificationServiceDep,
    user_id: Annotated[str, Query(min_length=1, description="Recipient user id")],
    read: Annotated[bool | None, Query(description="Filter by read flag")] = None,
    kind: NotificationKind | None = None,
    channel: ChannelType | None = None,
    status_filter: Annotated[NotificationStatus | None, Query(alias="status")] = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    sort_by: Annotated[str, Query(pattern=r"^(created_at|updated_at|sent_at|priority|status)$")] = "created_at",
    sort_direction: SortDirection = "desc",
) -> NotificationListResponse:
    result = await service.list_for_user(
        session,
        user_id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_direction=sort_direction,
        read=read,
        kind=kind.value if kind else None,
        channel=channel.value if channel else None,
        status=status_filter.value if status_filter else None,
        start_date=start_date,
        end_date=end_date,
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in result.items],
        total=result.total,
        page=page,
        limit=limit,
        unread_count=await service.unread_count(session, user_id),
    )


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread notification count")
async def unread_count(
    session: SessionDep,
    service: NotificationServiceDep,
    user_id: Annotated[str, Query(min_length=1)],
) -> UnreadCountResponse:
    return UnreadCountResponse(user_id=user_id, count=await service.unread_count(session, user_id))


@router.post("/mark-all-read", response_model=MarkAllReadResponse, summary="Mark all of a user's notifications read")
async def mark_all_read(
    session: SessionDep,
    service: NotificationServiceDep,
    user_id: Annotated[str, Query(min_length=1)],
) -> MarkAllReadResponse:
    updated = await service.mark_all_as_read(session, user_id)
    await session.commit()
    await service.push_read_state(session, user_id)
    return MarkAllReadResponse(user_id=user_id, updated=updated)


@router.post(
    "/send",
    response_model=SendResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification now",
    description="""
Resolve channels from the user's preference (or the explicit `channels`
list), render each channel's template and dispatch concurrently.

Delivery problems never fail the request: they are reported in
`outcomes` and in the notification's `status` and `data.error`.
""",
)
async def send_notification(
    body: NotificationSend,
    session: SessionDep,
    service: NotificationServiceDep,
) -> SendResponse:
    result = await service.send(session, body.model_dump(mode="json", exclude_none=True))
    await session.commit()
    return _send_response(result)


@router.post("/send-bulk", response_model=BulkSendResponse, summary="Send to many recipients")
async def send_bulk(
    body: NotificationBulkSend,
    session: SessionDep,
    service: NotificationServiceDep,
) -> BulkSendResponse:
    payload = body.model_dump(mode="json", exclude_none=True)
    recipients = payload.pop("recipients")
    result = await service.send_bulk(session, recipients, payload)
    await session.commit()
    return BulkSendResponse(
        success_count=result.success_count,
        failed_count=result.failed_count,
        notification_ids=[n.id for n in result.notifications],
        errors=result.errors,
    )


@router.post("/send-topic", response_model=TopicSendResponse, summary="Broadcast to a push topic")
async def send_topic(
    body: TopicSend,
    session: SessionDep,
    service: NotificationServiceDep,
) -> TopicSendResponse:
    sent = await service.send_topic(session, body.topic, body.kind.value, body.data, body.locale)
    await session.commit()
    return TopicSendResponse(topic=body.topic, sent=sent)


@router.post(
    "/schedule",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a notification",
)
async def schedule_notification(
    body: NotificationSchedule,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    payload = body.model_dump(mode="json", exclude_none=True, exclude={"scheduled_for"})
    notification = await service.schedule(session, payload, body.scheduled_for)
    await session.commit()
    return NotificationResponse.model_validate(notification)


@router.get("/statistics", response_model=StatisticsResponse, summary="Delivery statistics")
async def statistics(
    session: SessionDep,
    service: NotificationServiceDep,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> StatisticsResponse:
    return StatisticsResponse(**await service.statistics(session, start_date, end_date))


@router.post("/events", response_model=BulkSendResponse, summary="Turn a system event into admin alerts")
async def system_event(
    body: SystemEventRequest,
    session: SessionDep,
    handler: SystemEventHandlerDep,
) -> BulkSendResponse:
    result = await handler.handle(session, body.type.value, body.payload)
    await session.commit()
    return BulkSendResponse(
        success_count=result.success_count,
        failed_count=result.failed_count,
        notification_ids=[n.id for n in result.notifications],
        errors=result.errors,
    )


@router.get("/jobs", summary="Background job schedule")
async def job_status() -> list[dict]:
    return get_job_status()


@router.get(
    "/{notification_id}",
    response_model=NotificationResponse,
    summary="Get a notification",
    responses={404: {"description": "Notification not found"}},
)
async def get_notification(
    notification_id: UUID,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    return NotificationResponse.model_validate(await service.get(session, notification_id))


@router.post(
    "/{notification_id}/mark-read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
    responses={404: {"description": "Notification not found"}},
)
async def mark_read(
    notification_id: UUID,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    notification = await service.mark_as_read(session, notification_id)
    await session.commit()
    await service.push_read_state(session, notification.user_id, notification)
    return NotificationResponse.model_validate(notification)


@router.post(
    "/{notification_id}/cancel",
    response_model=NotificationResponse,
    summary="Cancel a scheduled notification",
    responses={
        404: {"description": "Notification not found"},
        409: {"description": "Notification is not a pending scheduled notification"},
    },
)
async def cancel_notification(
    notification_id: UUID,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    notification = await service.cancel_scheduled(session, notification_id)
    await session.commit()
    return NotificationResponse.model_validate(notification)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
    responses={404: {"description": "Notification not found"}},
)
async def delete_notification(
    notification_id: UUID,
    session: SessionDep,
    service: NotificationServiceDep,
) -> None:
    await service.delete(session, notification_id)
    await session.commit()
    logger.info("Notification deleted", extra={"notification_id": str(notification_id)})


# ============================================================================
# Preferences
# ============================================================================


@preferences_router.get("", response_model=PreferenceListResponse, summary="List a user's preferences")
async def list_preferences(
    session: SessionDep,
    resolver: PreferenceResolverDep,
    user_id: Annotated[str, Query(min_length=1)],
    user_type: str | None = None,
) -> PreferenceListResponse:
    items = await resolver.list_for_user(session, user_id, user_type)
    return PreferenceListResponse(
        items=[PreferenceResponse.model_validate(p) for p in items],
        total=len(items),
    )


@preferences_router.post(
    "",
    response_model=PreferenceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a preference, or update the existing one for the same key",
)
async def create_preference(
    body: PreferenceCreate,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    preference = await resolver.create(session, body.model_dump(mode="json", exclude_none=True))
    await session.commit()
    return PreferenceResponse.model_validate(preference)


@preferences_router.post(
    "/defaults",
    response_model=PreferenceListResponse,
    summary="Create the default preference for every kind",
)
async def create_default_preferences(
    body: PreferenceDefaultsRequest,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceListResponse:
    items = await resolver.create_defaults(session, body.user_id, body.user_type)
    await session.commit()
    return PreferenceListResponse(
        items=[PreferenceResponse.model_validate(p) for p in items],
        total=len(items),
    )


@preferences_router.patch("/enabled", response_model=PreferenceResponse, summary="Enable or disable a kind")
async def set_preference_enabled(
    body: PreferenceEnabledUpdate,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    preference = await resolver.set_enabled(session, body.user_id, body.user_type, body.kind.value, body.enabled)
    await session.commit()
    return PreferenceResponse.model_validate(preference)


@preferences_router.patch("/channels", response_model=PreferenceResponse, summary="Replace a kind's channels")
async def update_preference_channels(
    body: PreferenceChannelsUpdate,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    preference = await resolver.update_channels(
        session, body.user_id, body.user_type, body.kind.value, [c.value for c in body.channels]
    )
    await session.commit()
    return PreferenceResponse.model_validate(preference)


@preferences_router.patch("/frequency", response_model=PreferenceResponse, summary="Replace a kind's frequency")
async def update_preference_frequency(
    body: PreferenceFrequencyUpdate,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    preference = await resolver.update_frequency(
        session, body.user_id, body.user_type, body.kind.value, body.frequency.model_dump(mode="json")
    )
    await session.commit()
    return PreferenceResponse.model_validate(preference)


@preferences_router.patch(
    "/time-window",
    response_model=PreferenceResponse,
    summary="Set or clear a kind's quiet-hours window",
)
async def update_preference_time_window(
    body: PreferenceTimeWindowUpdate,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    window = body.time_window.model_dump(mode="json") if body.time_window else None
    preference = await resolver.update_time_window(session, body.user_id, body.user_type, body.kind.value, window)
    await session.commit()
    return PreferenceResponse.model_validate(preference)


@preferences_router.get("/{preference_id}", response_model=PreferenceResponse, summary="Get a preference")
async def get_preference(
    preference_id: UUID,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    return PreferenceResponse.model_validate(await resolver.get(session, preference_id))


@preferences_router.patch("/{preference_id}", response_model=PreferenceResponse, summary="Update a preference")
async def update_preference(
    preference_id: UUID,
    body: PreferenceUpdate,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> PreferenceResponse:
    preference = await resolver.update(session, preference_id, body.model_dump(mode="json", exclude_unset=True))
    await session.commit()
    return PreferenceResponse.model_validate(preference)


@preferences_router.delete(
    "/{preference_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a preference",
)
async def delete_preference(
    preference_id: UUID,
    session: SessionDep,
    resolver: PreferenceResolverDep,
) -> None:
    await resolver.delete(session, preference_id)
    await session.commit()


# ============================================================================
# Templates
# ============================================================================


@templates_router.get("", response_model=TemplateListResponse, summary="List templates")
async def list_templates(
    session: SessionDep,
    templates: TemplateServiceDep,
    kind: NotificationKind | None = None,
    channel: ChannelType | None = None,
    locale: str | None = None,
    is_active: bool | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> TemplateListResponse:
    result = await templates.list_templates(
        session,
        kind=kind.value if kind else None,
        channel=channel.value if channel else None,
        locale=locale,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    return TemplateListResponse(
        items=[TemplateResponse.model_validate(t) for t in result.items],
        total=result.total,
    )


@templates_router.post(
    "",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a template",
    responses={409: {"description": "Template name already exists"}},
)
async def create_template(
    body: TemplateCreate,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateResponse:
    template = await templates.create(session, body.model_dump(mode="json"))
    await session.commit()
    return TemplateResponse.model_validate(template)


@templates_router.post(
    "/defaults",
    response_model=TemplateListResponse,
    summary="Create a generic default template for every missing (kind, channel)",
)
async def create_default_templates(
    body: TemplateDefaultsRequest,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateListResponse:
    created = await templates.create_defaults(session, body.locale)
    await session.commit()
    return TemplateListResponse(
        items=[TemplateResponse.model_validate(t) for t in created],
        total=len(created),
    )


@templates_router.post(
    "/render",
    response_model=TemplateRenderResponse,
    summary="Render a template against sample data",
    responses={422: {"description": "Template could not be rendered with the given data"}},
)
async def render_template(
    body: TemplateRenderRequest,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateRenderResponse:
    content = await templates.render_by_id(session, body.template_id, body.data)
    return TemplateRenderResponse(template_id=body.template_id, content=content)


@templates_router.get("/by-name/{name}", response_model=TemplateResponse, summary="Get a template by name")
async def get_template_by_name(
    name: str,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateResponse:
    return TemplateResponse.model_validate(await templates.get_by_name(session, name))


@templates_router.get("/{template_id}", response_model=TemplateResponse, summary="Get a template")
async def get_template(
    template_id: UUID,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateResponse:
    return TemplateResponse.model_validate(await templates.get(session, template_id))


@templates_router.patch("/{template_id}", response_model=TemplateResponse, summary="Update a template")
async def update_template(
    template_id: UUID,
    body: TemplateUpdate,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateResponse:
    template = await templates.update(session, template_id, body.model_dump(mode="json", exclude_unset=True))
    await session.commit()
    return TemplateResponse.model_validate(template)


@templates_router.post(
    "/{template_id}/default",
    response_model=TemplateResponse,
    summary="Make a template the default for its (kind, channel, locale)",
    responses={409: {"description": "Template is inactive"}},
)
async def set_default_template(
    template_id: UUID,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> TemplateResponse:
    template = await templates.set_default(session, template_id)
    await session.commit()
    return TemplateResponse.model_validate(template)


@templates_router.delete(
    "/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a template",
    responses={409: {"description": "The only active default of its tuple cannot be deleted"}},
)
async def delete_template(
    template_id: UUID,
    session: SessionDep,
    templates: TemplateServiceDep,
) -> None:
    await templates.delete(session, template_id)
    await session.commit()
