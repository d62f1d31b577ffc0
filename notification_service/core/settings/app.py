"""HTTP application settings (APP_ prefix)."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """FastAPI metadata, route prefix and uvicorn bind address.

    Example: APP_API_PREFIX=/api/v2, APP_DISABLE_DOCS=true
    """

    title: str = Field(default="Notification Service API", min_length=1)
    description: str = Field(default="Notification dispatch and real-time delivery")
    version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9]+)?$")
    api_prefix: str = Field(
        default="/api/v1",
        pattern=r"^/.*$",
        description="Prefix for the REST routers; /metrics, /health and /ws stay unprefixed",
    )

    debug: bool = Field(default=False, description="FastAPI debug mode; also enables uvicorn reload")
    docs_url: str | None = "/docs"
    openapi_url: str | None = "/openapi.json"
    disable_docs: bool = False

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    def get_docs_url(self) -> str | None:
        return None if self.disable_docs else self.docs_url

    def get_openapi_url(self) -> str | None:
        return None if self.disable_docs else self.openapi_url
