"""Live connection tests over a real WebSocket handshake.

The socket handler runs on the TestClient's own event loop, so the
notification service and the session helper are replaced with mocks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from types import MethodType
from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient
import jwt
import pytest
from starlette.websockets import WebSocketDisconnect

from notification_service.core.exceptions import NotFoundException
from notification_service.core.settings.websocket import WebSocketSettings
from notification_service.features.notifications.service import NotificationService
from notification_service.features.realtime import registry as registry_module
from notification_service.features.realtime import router as realtime_router
from notification_service.features.realtime.registry import DeliveryRegistry


def _token(user_id: str, secret: str = "test-secret") -> str:
    return jwt.encode({"userId": user_id}, secret, algorithm="HS256")


def _url(user_id: str = "u1", token: str | None = None, user_type: str = "driver") -> str:
    return f"/ws/notifications?userId={user_id}&userType={user_type}&token={token or _token(user_id)}"


@pytest.fixture
def mock_service() -> MagicMock:
    service = MagicMock()
    service.unread_count = AsyncMock(return_value=3)
    service.list_for_user = AsyncMock(return_value=MagicMock(items=[], total=0))
    service.get_for_user = AsyncMock(return_value=MagicMock(id="n1"))
    service.mark_as_read = AsyncMock(return_value=MagicMock(id="n1"))
    service.mark_all_as_read = AsyncMock(return_value=2)
    service.push_read_state = AsyncMock()
    return service


@pytest.fixture
def live_registry(monkeypatch: pytest.MonkeyPatch) -> DeliveryRegistry:
    registry = DeliveryRegistry(settings=WebSocketSettings(heartbeat_interval=0))
    monkeypatch.setattr(registry_module, "_registry", registry)
    return registry


@pytest.fixture
def ws_client(monkeypatch: pytest.MonkeyPatch, mock_service: MagicMock, live_registry: DeliveryRegistry):
    session = MagicMock()
    session.commit = AsyncMock()

    @asynccontextmanager
    async def fake_session():
        yield session

    monkeypatch.setattr(realtime_router, "get_notification_service", lambda: mock_service)
    monkeypatch.setattr(realtime_router, "get_async_session", fake_session)

    app = FastAPI()
    app.include_router(realtime_router.router)
    with TestClient(app) as client:
        yield client


def test_unread_count_is_pushed_on_connect(ws_client: TestClient, live_registry: DeliveryRegistry) -> None:
    with ws_client.websocket_connect(_url()) as ws:
        assert ws.receive_json() == {"type": "unreadCount", "count": 3}
        assert live_registry.is_connected("u1")
        assert ws_client.get("/ws/stats").json() == {
            "total_connections": 1,
            "users": 1,
            "user_types": {"driver": 1},
        }

    assert ws_client.get("/ws/stats").json()["total_connections"] == 0


@pytest.mark.parametrize(
    "token",
    [_token("u1", secret="wrong-secret"), _token("someone-else"), "garbage"],
)
def test_bad_token_closes_with_policy_violation(ws_client: TestClient, token: str) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info, ws_client.websocket_connect(_url(token=token)) as ws:
        ws.receive_json()
    assert exc_info.value.code == 1008


def test_missing_identity_is_rejected(ws_client: TestClient) -> None:
    with (
        pytest.raises(WebSocketDisconnect) as exc_info,
        ws_client.websocket_connect(f"/ws/notifications?token={_token('u1')}") as ws,
    ):
        ws.receive_json()
    assert exc_info.value.code == 1008


def test_get_notifications_after_malformed_frames(ws_client: TestClient, mock_service: MagicMock) -> None:
    with ws_client.websocket_connect(_url()) as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json([1, 2, 3])
        ws.send_json({"type": "getNotifications", "data": {"page": 2, "read": False}})

        reply = ws.receive_json()

    assert reply == {"type": "notificationsList", "notifications": [], "total": 0, "page": 2}
    args, kwargs = mock_service.list_for_user.call_args
    assert args[1] == "u1"
    assert kwargs == {"page": 2, "limit": 20, "read": False}


def test_mark_as_read_commits_and_pushes(ws_client: TestClient, mock_service: MagicMock) -> None:
    with ws_client.websocket_connect(_url()) as ws:
        ws.receive_json()
        ws.send_json({"type": "markAsRead", "data": {"notificationId": "n1"}})
        ws.send_json({"type": "markAllAsRead"})
        # A request/response pair proves the earlier frames were handled
        ws.send_json({"type": "getNotifications"})
        ws.receive_json()

    assert mock_service.get_for_user.call_args.args[1:] == ("n1", "u1")
    mock_service.mark_as_read.assert_awaited_once()
    mock_service.mark_all_as_read.assert_awaited_once()
    assert mock_service.push_read_state.await_count == 2


def test_unknown_notification_returns_error_frame(ws_client: TestClient, mock_service: MagicMock) -> None:
    mock_service.get_for_user.side_effect = NotFoundException(
        detail="Notification n9 not found",
        type="notification-not-found",
    )

    with ws_client.websocket_connect(_url()) as ws:
        ws.receive_json()
        ws.send_json({"type": "markAsRead", "data": {"notificationId": "n9"}})
        error = ws.receive_json()

    assert error == {"type": "error", "code": "notification-not-found", "message": "Notification n9 not found"}


def test_stats_without_registry(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(registry_module, "_registry", None)
    app = FastAPI()
    app.include_router(realtime_router.router)

    with TestClient(app) as client:
        assert client.get("/ws/stats").status_code == 503


def test_pong_refreshes_last_activity(ws_client: TestClient, live_registry: DeliveryRegistry) -> None:
    with ws_client.websocket_connect(_url()) as ws:
        ws.receive_json()
        connection = live_registry.get_user_connection("u1")
        connection.last_activity = 0.0

        ws.send_json({"type": "pong"})
        ws.send_json({"type": "getNotifications"})
        ws.receive_json()

        assert connection.last_activity > 0.0


def test_unknown_frame_type_is_ignored(ws_client: TestClient, mock_service: MagicMock) -> None:
    with ws_client.websocket_connect(_url()) as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "data": {"topic": "loads"}})
        ws.send_json({"type": "getNotifications"})

        reply = ws.receive_json()

    assert reply["type"] == "notificationsList"
    mock_service.mark_as_read.assert_not_awaited()
    mock_service.mark_all_as_read.assert_not_awaited()


def test_mark_all_as_read_pushes_refreshed_unread_count(
    ws_client: TestClient,
    mock_service: MagicMock,
) -> None:
    # Real push path against the mocked reads
    mock_service.push_read_state = MethodType(NotificationService.push_read_state, mock_service)

    with ws_client.websocket_connect(_url()) as ws:
        assert ws.receive_json() == {"type": "unreadCount", "count": 3}
        mock_service.unread_count.return_value = 0

        ws.send_json({"type": "markAllAsRead"})

        assert ws.receive_json() == {"type": "unreadCount", "count": 0}

    mock_service.mark_all_as_read.assert_awaited_once()
