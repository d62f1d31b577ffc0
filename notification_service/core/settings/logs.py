"""Logging settings (LOG_ prefix)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Where log records go and how they are rendered.

    LOG_LEVEL=DEBUG, LOG_JSON_LOGS=false gives readable console output for local
    work; production keeps the JSON Lines default.
    """

    service_name: str = Field(default="notification-service", description="Static 'service' field on JSON records")
    level: LogLevel = Field(default="INFO", description="Root logger level")
    json_logs: bool = Field(default=True, description="Emit JSON Lines instead of plain text")
    console_enabled: bool = Field(default=True)

    # Rotation only applies when a file path is configured
    file_path: Path | None = Field(default=None, description="Write a rotated JSONL file alongside the console")
    file_max_bytes: int = Field(default=10_485_760, ge=1024)
    file_backup_count: int = Field(default=5, ge=0, le=100)

    include_context: bool = Field(default=True, description="Attach set_log_context() fields to every record")
    capture_warnings: bool = Field(default=True)
    quiet_loggers: list[str] = Field(
        default_factory=lambda: ["httpx", "httpcore", "apscheduler.executors", "aiosqlite"],
        description="Third-party loggers held at WARNING regardless of the root level",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def to_logging_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for configure_logging()."""
        return {
            "level": self.level,
            "json_logs": self.json_logs,
            "console": self.console_enabled,
            "file_path": self.file_path,
            "max_bytes": self.file_max_bytes,
            "backup_count": self.file_backup_count,
            "include_context": self.include_context,
            "capture_warnings": self.capture_warnings,
            "quiet": tuple(self.quiet_loggers),
            "service_name": self.service_name,
        }
