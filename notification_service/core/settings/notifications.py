"""Notification delivery settings.

Environment variables use NOTIFY_ prefix.
Example: NOTIFY_SMS_ENABLED=false, NOTIFY_DELIVERY_TIMEOUT=10
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

EmailProvider = Literal["console", "sendgrid"]
SmsProvider = Literal["console", "twilio"]
PushProvider = Literal["console", "fcm"]


class NotificationSettings(BaseSettings):
    """Channel, delivery and background-job configuration.

    Environment variables use NOTIFY_ prefix.
    """

    # ──────────────────────────────────────────────────────────────
    # Channel toggles
    # ──────────────────────────────────────────────────────────────

    email_enabled: bool = Field(default=True, description="Enable the email channel")
    sms_enabled: bool = Field(default=True, description="Enable the SMS channel")
    push_enabled: bool = Field(default=True, description="Enable the mobile push channel")
    in_app_enabled: bool = Field(default=True, description="Enable the in-app channel")

    # ──────────────────────────────────────────────────────────────
    # Providers
    # ──────────────────────────────────────────────────────────────

    email_provider: EmailProvider = Field(
        default="console",
        description="Email provider: console (dev) or sendgrid",
    )
    email_from_address: str = Field(
        default="notifications@localhost",
        description="Sender address for outbound email",
    )
    email_from_name: str | None = Field(default=None, description="Sender display name")
    sendgrid_api_key: SecretStr | None = Field(default=None, description="SendGrid API key")

    sms_provider: SmsProvider = Field(
        default="console",
        description="SMS provider: console (dev) or twilio",
    )
    twilio_account_sid: str | None = Field(default=None, description="Twilio account SID")
    twilio_auth_token: SecretStr | None = Field(default=None, description="Twilio auth token")
    twilio_from_number: str | None = Field(default=None, description="Twilio sender number")

    push_provider: PushProvider = Field(
        default="console",
        description="Push provider: console (dev) or fcm",
    )
    fcm_server_key: SecretStr | None = Field(default=None, description="FCM server key")

    # ──────────────────────────────────────────────────────────────
    # Delivery
    # ──────────────────────────────────────────────────────────────

    delivery_timeout: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Seconds to wait for a provider before marking the attempt failed",
    )
    max_concurrency: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Upper bound on concurrent sends within one orchestrator call",
    )
    default_locale: str = Field(default="en_US", description="Locale used when none is given")

    # ──────────────────────────────────────────────────────────────
    # Background jobs
    # ──────────────────────────────────────────────────────────────

    scheduler_enabled: bool = Field(
        default=True,
        description="Run the scheduled/retry/cleanup jobs in-process",
    )
    scheduler_poll_interval: float = Field(
        default=5.0,
        gt=0,
        le=3600,
        description="Seconds between scheduled-notification polls",
    )
    retry_attempts: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Maximum automatic retries for a failed notification",
    )
    retry_max_age_hours: int = Field(
        default=24,
        ge=1,
        le=720,
        description="Failed notifications older than this are not retried",
    )
    retry_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between retry sweeps",
    )
    retention_days: int = Field(
        default=90,
        ge=1,
        le=3650,
        description="Notifications older than this are deleted by the cleanup job",
    )
    cleanup_interval_hours: float = Field(
        default=24.0,
        gt=0,
        description="Hours between retention sweeps",
    )

    # ──────────────────────────────────────────────────────────────
    # System alerts
    # ──────────────────────────────────────────────────────────────

    admin_recipients: list[str] = Field(
        default_factory=list,
        description="Admin user ids that receive system alert notifications",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
