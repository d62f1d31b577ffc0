"""WebSocket router for live notification delivery.

Endpoints:
- WS /ws/notifications?token=...&userId=...&userType=...: live connection
- GET /ws/stats: registry statistics
"""

from __future__ import annotations

import contextlib
import json
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from notification_service.core.exceptions import AppException, UnauthorizedException
from notification_service.core.settings import get_websocket_settings
from notification_service.features.notifications.metrics import (
    websocket_connections_rejected_total,
    websocket_messages_total,
)
from notification_service.features.notifications.service import get_notification_service
from notification_service.features.realtime.registry import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    get_delivery_registry,
)
from notification_service.features.realtime.schemas import (
    ClientEnvelope,
    ClientMessageType,
    ConnectionStats,
    ErrorMessage,
    GetNotificationsData,
    MarkAsReadData,
    NotificationsListMessage,
)
from notification_service.infra.auth import authenticate_user
from notification_service.infra.database import get_async_session
from notification_service.infra.logging import remove_from_log_context, set_log_context

if TYPE_CHECKING:
    from notification_service.features.realtime.registry import Connection, DeliveryRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ws", tags=["realtime"])


def _get_registry_safe() -> DeliveryRegistry | None:
    """Get the delivery registry, handling the not-started case."""
    try:
        return get_delivery_registry()
    except RuntimeError:
        return None


async def _reject(websocket: WebSocket, reason: str, detail: str) -> None:
    websocket_connections_rejected_total.labels(reason=reason).inc()
    logger.warning("Live connection rejected", extra={"reason": reason, "detail": detail})
    await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=detail[:120])


@router.websocket("/notifications")
async def notifications_socket(
    websocket: WebSocket,
    token: Annotated[str | None, Query(description="Bearer access token")] = None,
    user_id: Annotated[str | None, Query(alias="userId", description="Claimed user id")] = None,
    user_type: Annotated[str | None, Query(alias="userType", description="Role of the user")] = None,
) -> None:
    """Live notification connection.

    The token is verified and must belong to ``userId``; any failure closes
    the socket with 1008 before it is registered.

    Message Protocol:
        Client → Server:
        - {"type": "getNotifications", "data": {"page": 1, "limit": 20, "read": false}}
        - {"type": "markAsRead", "data": {"notificationId": "..."}}
        - {"type": "markAllAsRead"}
        - {"type": "pong"}

        Server → Client:
        - {"type": "unreadCount", "count": 3}
        - {"type": "notification", "notification": {...}}
        - {"type": "notificationsList", "notifications": [...], "total": 10, "page": 1}
        - {"type": "ping"}
        - {"type": "error", "code": "...", "message": "..."}
    """
    if not get_websocket_settings().enabled:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="WebSocket disabled")
        return

    registry = _get_registry_safe()
    if registry is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Server not ready")
        return

    await websocket.accept()

    if not user_id or not user_type:
        await _reject(websocket, "missing_identity", "userId and userType are required")
        return
    try:
        authenticate_user(token, user_id)
    except UnauthorizedException as e:
        await _reject(websocket, e.type, e.detail)
        return

    try:
        connection = await registry.register(websocket, user_id, user_type)
    except ConnectionRefusedError as e:
        websocket_connections_rejected_total.labels(reason="capacity").inc()
        logger.warning("Live connection refused", extra={"reason": str(e)})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=str(e))
        return

    set_log_context(user_id=user_id, connection_id=connection.connection_id)
    try:
        await _push_unread_count(registry, user_id)
        await _handle_messages(websocket, connection, registry)
    except WebSocketDisconnect:
        logger.debug("Live connection closed by client", extra={"user_id": user_id})
    except Exception as e:
        logger.exception("Live connection error", extra={"user_id": user_id, "error": str(e)})
        with contextlib.suppress(Exception):
            await websocket.close(code=CLOSE_INTERNAL_ERROR, reason="Internal error")
    finally:
        await registry.unregister(connection)
        remove_from_log_context("user_id", "connection_id")


async def _push_unread_count(registry: DeliveryRegistry, user_id: str) -> None:
    async with get_async_session() as session:
        count = await get_notification_service().unread_count(session, user_id)
    await registry.send_unread_count(user_id, count)


async def _handle_messages(
    websocket: WebSocket,
    connection: Connection,
    registry: DeliveryRegistry,
) -> None:
    """Dispatch inbound frames until the client goes away."""
    async for raw_message in websocket.iter_text():
        try:
            envelope = ClientEnvelope.model_validate(json.loads(raw_message))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Ignoring malformed frame", extra={"connection_id": connection.connection_id})
            continue

        websocket_messages_total.labels(direction="in", type=envelope.type).inc()
        try:
            await _handle_message(connection, registry, envelope)
        except (AppException, ValidationError) as e:
            error = ErrorMessage(code=getattr(e, "type", "validation-error"), message=str(getattr(e, "detail", e)))
            await registry.send(connection, error.model_dump(mode="json"))


async def _handle_message(
    connection: Connection,
    registry: DeliveryRegistry,
    envelope: ClientEnvelope,
) -> None:
    service = get_notification_service()
    user_id = connection.user_id

    if envelope.type == ClientMessageType.PONG:
        await registry.touch(connection)

    elif envelope.type == ClientMessageType.GET_NOTIFICATIONS:
        params = GetNotificationsData.model_validate(envelope.data)
        limit = params.limit or get_websocket_settings().page_size
        async with get_async_session() as session:
            result = await service.list_for_user(session, user_id, page=params.page, limit=limit, read=params.read)
        reply = NotificationsListMessage(
            notifications=[n.to_payload() for n in result.items],
            total=result.total,
            page=params.page,
        )
        await registry.send(connection, reply.model_dump(mode="json"))

    elif envelope.type == ClientMessageType.MARK_AS_READ:
        params = MarkAsReadData.model_validate(envelope.data)
        async with get_async_session() as session:
            notification = await service.get_for_user(session, params.notification_id, user_id)
            notification = await service.mark_as_read(session, notification.id)
            await session.commit()
            await service.push_read_state(session, user_id, notification)

    elif envelope.type == ClientMessageType.MARK_ALL_AS_READ:
        async with get_async_session() as session:
            await service.mark_all_as_read(session, user_id)
            await session.commit()
            await service.push_read_state(session, user_id)

    else:
        logger.info(
            "Ignoring unknown frame type",
            extra={"connection_id": connection.connection_id, "type": envelope.type},
        )


@router.get(
    "/stats",
    response_model=ConnectionStats,
    summary="Live connection statistics",
)
async def get_stats() -> ConnectionStats | JSONResponse:
    registry = _get_registry_safe()
    if registry is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Delivery registry not initialized"},
        )
    return ConnectionStats(**registry.stats())
