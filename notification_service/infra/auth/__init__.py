"""Access token verification."""

from notification_service.infra.auth.tokens import (
    authenticate_user,
    user_id_from_claims,
    verify_token,
)

__all__ = ["authenticate_user", "user_id_from_claims", "verify_token"]
