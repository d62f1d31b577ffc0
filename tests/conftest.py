"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - Database Fixtures: in-memory SQLite engine, session factory and session
    - Channel Fixtures: recording backends and a dispatcher built on them
    - Service Fixtures: orchestrator wired to the fakes
    - Application Fixtures: FastAPI app and HTTP client
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketState

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("NOTIFY_SCHEDULER_ENABLED", "false")
os.environ.setdefault("WS_HEARTBEAT_INTERVAL", "0")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from notification_service.core.database import Base  # noqa: E402
from notification_service.core.settings import clear_all_caches  # noqa: E402
from notification_service.core.settings.notifications import NotificationSettings  # noqa: E402
from notification_service.features.notifications import models  # noqa: E402, F401
from notification_service.features.notifications.channels.base import ChannelOutcome  # noqa: E402
from notification_service.features.notifications.channels.dispatcher import ChannelDispatcher  # noqa: E402
from notification_service.features.notifications.enums import ChannelType, NotificationStatus  # noqa: E402
from notification_service.features.notifications.preferences import PreferenceResolver  # noqa: E402
from notification_service.features.notifications.repository import (  # noqa: E402
    NotificationRepository,
    PreferenceRepository,
    TemplateRepository,
)
from notification_service.features.notifications.service import NotificationService  # noqa: E402
from notification_service.features.notifications.templates.renderer import TemplateRenderer  # noqa: E402
from notification_service.features.notifications.templates.service import TemplateService  # noqa: E402
from notification_service.infra.database import configure_session_factory, enable_sqlite_savepoints  # noqa: E402


# ============================================================================
# Singletons
# ============================================================================


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch: pytest.MonkeyPatch):
    """Drop cached settings and service singletons around every test."""
    from notification_service.features.notifications import events, preferences, repository, service
    from notification_service.features.notifications.channels import dispatcher
    from notification_service.features.notifications.templates import renderer
    from notification_service.features.notifications.templates import service as template_service
    from notification_service.features.realtime import registry

    clear_all_caches()
    monkeypatch.setattr(service, "_service", None)
    monkeypatch.setattr(preferences, "_resolver", None)
    monkeypatch.setattr(template_service, "_service", None)
    monkeypatch.setattr(renderer, "_renderer", None)
    monkeypatch.setattr(dispatcher, "_dispatcher", None)
    monkeypatch.setattr(events, "_handler", None)
    monkeypatch.setattr(registry, "_registry", None)
    for name in ("_notification_repository", "_preference_repository", "_template_repository"):
        monkeypatch.setattr(repository, name, None)
    yield
    clear_all_caches()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def session_factory(db_engine: AsyncEngine) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Session factory installed as the process-wide one.

    Background sweeps open their own sessions through it. Tests that call
    a sweep must commit their own session first, the connection is shared.
    """
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    configure_session_factory(factory)
    try:
        yield factory
    finally:
        configure_session_factory(None)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Channel Fixtures
# ============================================================================


class RecordingBackend:
    """Channel backend that records every delivery and answers a fixed status.

    ``status`` may be changed between calls; setting ``error`` to an
    exception makes deliver raise it.
    """

    def __init__(self, channel: ChannelType, status: NotificationStatus = NotificationStatus.SENT) -> None:
        self.channel = channel
        self.status = status
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []

    def extract_recipient(self, contact: dict[str, Any], notification: Any) -> Any | None:
        if self.channel is ChannelType.IN_APP:
            return notification.user_id
        if self.channel is ChannelType.EMAIL:
            return contact.get("email")
        if self.channel is ChannelType.SMS:
            return contact.get("phone")
        return contact.get("device_tokens") or None

    async def deliver(self, content: dict[str, Any], recipient: Any, notification: Any) -> ChannelOutcome:
        self.calls.append({"content": content, "recipient": recipient, "notification_id": notification.id})
        if self.error is not None:
            raise self.error
        error = "provider rejected" if self.status is NotificationStatus.FAILED else None
        return ChannelOutcome(self.channel.value, self.status, error=error)


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        delivery_timeout=2,
        max_concurrency=4,
        scheduler_enabled=False,
        retry_attempts=3,
        retry_max_age_hours=24,
        retention_days=30,
        admin_recipients=["admin-1"],
    )


@pytest.fixture
def backends() -> dict[str, RecordingBackend]:
    return {channel.value: RecordingBackend(channel) for channel in ChannelType}


@pytest.fixture
def dispatcher(
    notification_settings: NotificationSettings,
    backends: dict[str, RecordingBackend],
) -> ChannelDispatcher:
    return ChannelDispatcher(settings=notification_settings, backends=dict(backends), renderer=TemplateRenderer())


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def resolver() -> PreferenceResolver:
    return PreferenceResolver(PreferenceRepository())


@pytest.fixture
def template_service() -> TemplateService:
    return TemplateService(TemplateRepository(), TemplateRenderer())


@pytest.fixture
def notification_service(
    resolver: PreferenceResolver,
    template_service: TemplateService,
    dispatcher: ChannelDispatcher,
    notification_settings: NotificationSettings,
) -> NotificationService:
    return NotificationService(
        repository=NotificationRepository(),
        resolver=resolver,
        templates=template_service,
        dispatcher=dispatcher,
        settings=notification_settings,
    )


# ============================================================================
# WebSocket Fixtures
# ============================================================================


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket used by registry tests."""

    def __init__(self, *, fail_send: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self.fail_send = fail_send

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.fail_send:
            raise RuntimeError("socket is gone")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = code
        self.client_state = WebSocketState.DISCONNECTED


@pytest.fixture
def fake_websocket() -> FakeWebSocket:
    return FakeWebSocket()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(session_factory, notification_service, monkeypatch: pytest.MonkeyPatch):
    """FastAPI application wired to the in-memory database and fake channels.

    Lifespan does not run under ASGITransport, so the database and registry
    are set up by the fixtures instead.
    """
    from notification_service.app.main import create_app
    from notification_service.features.notifications import service

    monkeypatch.setattr(service, "_service", notification_service)
    return create_app()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
