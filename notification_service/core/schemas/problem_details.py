"""Error response bodies (RFC 7807)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetails(BaseModel):
    """``application/problem+json`` body.

    AppException.extra is merged in next to the standard members, so
    clients see e.g. ``notification_id`` or ``errors`` at the top level.
    """

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "notification-not-found",
                "title": "Not Found",
                "status": 404,
                "detail": "Notification 0192f7c2-... not found",
                "instance": "/api/v1/notifications/0192f7c2-...",
                "notification_id": "0192f7c2-...",
            }
        },
    )

    type: str = "about:blank"
    title: str
    status: int = Field(ge=400, le=599)
    detail: str | None = None
    instance: str | None = None


class FieldError(BaseModel):
    field: str
    message: str
    type: str
    value: Any | None = None


class ValidationProblemDetails(ProblemDetails):
    """422 raised by FastAPI's own request validation, one entry per bad field."""

    errors: list[FieldError] = Field(default_factory=list)
