"""Access token verification settings."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """JWT verification for live connections.

    Environment variables use AUTH_ prefix.
    Example: AUTH_JWT_SECRET=change-me, AUTH_JWT_ALGORITHMS='["HS256"]'
    """

    jwt_secret: SecretStr = Field(
        default=SecretStr("change-me"),
        description="Shared secret used to verify access tokens",
    )
    jwt_algorithms: list[str] = Field(
        default_factory=lambda: ["HS256"],
        description="Accepted signing algorithms",
    )
    jwt_audience: str | None = Field(
        default=None,
        description="Expected audience claim, if tokens carry one",
    )
    user_id_claim: str = Field(
        default="userId",
        description="Claim holding the authenticated user id",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
