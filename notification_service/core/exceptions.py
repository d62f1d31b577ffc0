"""Application exceptions rendered as RFC 7807 problem documents.

Each subclass fixes the HTTP status and title; call sites choose a
machine-readable ``type`` slug and attach context through ``extra``:

    raise NotFoundException(
        detail=f"Notification {notification_id} not found",
        type="notification-not-found",
        extra={"notification_id": str(notification_id)},
    )

Delivery failures are recorded on the notification row and never raised
through this hierarchy.
"""

from __future__ import annotations

from typing import Any, ClassVar


class AppException(Exception):
    status_code: ClassVar[int] = 500
    title: ClassVar[str] = "Internal Server Error"
    default_type: ClassVar[str] = "about:blank"

    def __init__(
        self,
        detail: str,
        type: str | None = None,  # noqa: A002
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.type = type or self.default_type
        self.extra = extra or {}


class NotFoundException(AppException):
    status_code = 404
    title = "Not Found"
    default_type = "not-found"


class ValidationException(AppException):
    """Rejected input, raised before any row is written."""

    status_code = 422
    title = "Validation Error"
    default_type = "validation-error"


class ConflictException(AppException):
    """The target exists but is in the wrong state for the request."""

    status_code = 409
    title = "Conflict"
    default_type = "resource-conflict"


class UnauthorizedException(AppException):
    status_code = 401
    title = "Unauthorized"
    default_type = "unauthorized"


# ============================================================================
# Token verification
# ============================================================================


class MissingAuthenticationError(UnauthorizedException):
    default_type = "missing-authentication"

    def __init__(self, detail: str = "Authentication credentials required") -> None:
        super().__init__(detail)


class TokenExpiredError(UnauthorizedException):
    default_type = "token-expired"

    def __init__(self, detail: str = "Token has expired") -> None:
        super().__init__(detail)


class TokenInvalidError(UnauthorizedException):
    default_type = "token-invalid"

    def __init__(self, detail: str = "Invalid token", reason: str | None = None) -> None:
        super().__init__(detail, extra={"reason": reason} if reason else None)


class IdentityMismatchError(UnauthorizedException):
    """A valid token that belongs to someone other than the claimed user."""

    default_type = "identity-mismatch"

    def __init__(self, claimed: str, verified: str | None) -> None:
        super().__init__(
            "Token subject does not match the claimed user",
            extra={"claimed_user_id": claimed, "token_user_id": verified},
        )
