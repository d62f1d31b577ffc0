"""Live-connection registry for in-app notification delivery.

The registry indexes open sockets two ways:
- by exact user id, one active socket per user (a newer connection
  replaces the entry without closing the older socket)
- by user type, a set of sockets per role

Every mutation goes through one asyncio.Lock. Sends happen outside the
lock on a snapshot of the connection, so a slow client never blocks
registration of others.

A heartbeat task sweeps all connections on a fixed interval: a connection
idle for longer than the timeout is closed and deregistered, every other
connection gets a ping frame.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from starlette.websockets import WebSocketState

from notification_service.core.settings import get_websocket_settings
from notification_service.features.notifications.metrics import (
    websocket_connections_active,
    websocket_messages_total,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import WebSocket

    from notification_service.core.settings.websocket import WebSocketSettings

logger = logging.getLogger(__name__)

# Close codes
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011


@dataclass(eq=False)
class Connection:
    """One registered live connection."""

    websocket: WebSocket
    user_id: str
    user_type: str
    connection_id: str = field(default_factory=lambda: str(uuid4()))
    connected_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    @property
    def is_open(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED


class DeliveryRegistry:
    """Registry of live notification connections.

    Example:
        registry = DeliveryRegistry()
        await registry.start()

        connection = await registry.register(websocket, "u1", "driver")
        try:
            ...
        finally:
            await registry.unregister(connection)

        delivered = await registry.broadcast("u1", notification.to_payload())
    """

    def __init__(
        self,
        settings: WebSocketSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_websocket_settings()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._by_user_id: dict[str, Connection] = {}
        self._by_user_type: dict[str, set[Connection]] = {}
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        if self._settings.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(
            "Delivery registry started",
            extra={
                "heartbeat_interval": self._settings.heartbeat_interval,
                "connection_timeout": self._settings.connection_timeout,
            },
        )

    async def stop(self) -> None:
        """Stop the heartbeat and close every registered connection."""
        self._running = False
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat_task
            self._heartbeat_task = None

        async with self._lock:
            connections = self._all_connections()
            self._by_user_id.clear()
            self._by_user_type.clear()
            websocket_connections_active.set(0)

        for connection in connections:
            with contextlib.suppress(Exception):
                await connection.websocket.close(code=CLOSE_GOING_AWAY, reason="Server shutdown")

        logger.info("Delivery registry stopped", extra={"connections_closed": len(connections)})

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, websocket: WebSocket, user_id: str, user_type: str) -> Connection:
        """Index an accepted, authenticated socket.

        Raises:
            ConnectionRefusedError: If the connection limit is reached
        """
        connection = Connection(websocket=websocket, user_id=user_id, user_type=user_type)
        connection.connected_at = connection.last_activity = self._clock()

        async with self._lock:
            if len(self._all_connections()) >= self._settings.max_connections:
                raise ConnectionRefusedError("Maximum connections reached")

            replaced = self._by_user_id.get(user_id)
            self._by_user_id[user_id] = connection
            self._by_user_type.setdefault(user_type, set()).add(connection)
            total = len(self._all_connections())
            websocket_connections_active.set(total)

        logger.info(
            "Live connection registered",
            extra={
                "connection_id": connection.connection_id,
                "user_id": user_id,
                "user_type": user_type,
                "replaced": replaced.connection_id if replaced else None,
                "total_connections": total,
            },
        )
        return connection

    async def unregister(self, connection: Connection) -> bool:
        """Remove a connection from both indexes. Returns False if it was not registered."""
        async with self._lock:
            removed = False
            if self._by_user_id.get(connection.user_id) is connection:
                del self._by_user_id[connection.user_id]
                removed = True
            peers = self._by_user_type.get(connection.user_type)
            if peers is not None and connection in peers:
                peers.discard(connection)
                removed = True
                if not peers:
                    del self._by_user_type[connection.user_type]
            total = len(self._all_connections())
            websocket_connections_active.set(total)

        if removed:
            logger.info(
                "Live connection unregistered",
                extra={
                    "connection_id": connection.connection_id,
                    "user_id": connection.user_id,
                    "duration_seconds": self._clock() - connection.connected_at,
                    "total_connections": total,
                },
            )
        return removed

    async def touch(self, connection: Connection) -> None:
        """Record client activity (pong or any inbound frame)."""
        async with self._lock:
            connection.last_activity = self._clock()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def broadcast(self, user_id: str, notification: dict[str, Any]) -> bool:
        """Push a notification frame to the user's live socket.

        Returns False when the user has no open connection; that is not
        an error, the user simply has no live session.
        """
        async with self._lock:
            connection = self._by_user_id.get(user_id)
        if connection is None:
            return False
        return await self.send(connection, {"type": "notification", "notification": notification})

    async def send_unread_count(self, user_id: str, count: int) -> bool:
        async with self._lock:
            connection = self._by_user_id.get(user_id)
        if connection is None:
            return False
        return await self.send(connection, {"type": "unreadCount", "count": count})

    async def send_to_user_type(self, user_type: str, message: dict[str, Any]) -> int:
        """Send a frame to every connection of a role. Returns the number reached."""
        async with self._lock:
            connections = list(self._by_user_type.get(user_type, ()))
        sent = 0
        for connection in connections:
            if await self.send(connection, message):
                sent += 1
        return sent

    async def send(self, connection: Connection, message: dict[str, Any]) -> bool:
        """Send one frame; a failed send deregisters the connection."""
        if not connection.is_open:
            await self.unregister(connection)
            return False
        try:
            await connection.websocket.send_json(message)
        except Exception as e:
            logger.warning(
                "Failed to send to live connection",
                extra={"connection_id": connection.connection_id, "user_id": connection.user_id, "error": str(e)},
            )
            await self.unregister(connection)
            return False
        websocket_messages_total.labels(direction="out", type=str(message.get("type"))).inc()
        return True

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def sweep(self, now: float | None = None) -> list[Connection]:
        """Terminate stale connections and ping the rest.

        Returns:
            The connections that were terminated
        """
        now = self._clock() if now is None else now
        timeout = self._settings.connection_timeout

        async with self._lock:
            connections = self._all_connections()

        terminated: list[Connection] = []
        for connection in connections:
            if timeout > 0 and (now - connection.last_activity) > timeout:
                logger.warning(
                    "Live connection timed out",
                    extra={
                        "connection_id": connection.connection_id,
                        "user_id": connection.user_id,
                        "idle_seconds": now - connection.last_activity,
                    },
                )
                await self.unregister(connection)
                with contextlib.suppress(Exception):
                    await connection.websocket.close(code=CLOSE_GOING_AWAY, reason="Heartbeat timeout")
                terminated.append(connection)
                continue
            await self.send(connection, {"type": "ping"})
        return terminated

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.heartbeat_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Heartbeat sweep failed")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_connected(self, user_id: str) -> bool:
        connection = self._by_user_id.get(user_id)
        return connection is not None and connection.is_open

    def get_user_connection(self, user_id: str) -> Connection | None:
        return self._by_user_id.get(user_id)

    def get_type_connections(self, user_type: str) -> list[Connection]:
        return list(self._by_user_type.get(user_type, ()))

    @property
    def connection_count(self) -> int:
        return len(self._all_connections())

    def stats(self) -> dict[str, Any]:
        return {
            "total_connections": self.connection_count,
            "users": len(self._by_user_id),
            "user_types": {k: len(v) for k, v in self._by_user_type.items()},
        }

    def _all_connections(self) -> list[Connection]:
        unique: dict[str, Connection] = {c.connection_id: c for c in self._by_user_id.values()}
        for peers in self._by_user_type.values():
            for connection in peers:
                unique.setdefault(connection.connection_id, connection)
        return list(unique.values())


# Global registry instance
_registry: DeliveryRegistry | None = None


def get_delivery_registry() -> DeliveryRegistry:
    """Get the global delivery registry.

    Raises:
        RuntimeError: If the registry has not been started
    """
    if _registry is None:
        raise RuntimeError("Delivery registry not initialized. Call start_delivery_registry() first.")
    return _registry


async def start_delivery_registry(registry: DeliveryRegistry | None = None) -> DeliveryRegistry:
    global _registry
    _registry = registry or DeliveryRegistry()
    await _registry.start()
    return _registry


async def stop_delivery_registry() -> None:
    global _registry
    if _registry is not None:
        await _registry.stop()
        _registry = None


async def broadcast_to_user(user_id: str, notification: dict[str, Any]) -> bool:
    """Broadcast through the global registry; False when none is running."""
    if _registry is None:
        return False
    return await _registry.broadcast(user_id, notification)
