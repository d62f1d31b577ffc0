"""Live-connection settings (WS_ prefix)."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebSocketSettings(BaseSettings):
    """Delivery registry limits and heartbeat timing.

    WS_HEARTBEAT_INTERVAL=0 disables the sweep entirely; WS_CONNECTION_TIMEOUT=0
    keeps pinging but never terminates idle sockets.
    """

    enabled: bool = Field(default=True, description="Mount /ws routes and run the registry")
    max_connections: int = Field(default=10_000, ge=1, description="Per-instance cap; further sockets are refused")
    heartbeat_interval: float = Field(default=30.0, ge=0, description="Seconds between heartbeat sweeps")
    connection_timeout: float = Field(default=120.0, ge=0, description="Idle seconds before a socket is terminated")
    page_size: int = Field(default=20, ge=1, le=100, description="Default limit for getNotifications frames")

    model_config = SettingsConfigDict(
        env_prefix="WS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
