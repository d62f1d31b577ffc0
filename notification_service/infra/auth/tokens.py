"""Access token verification with PyJWT.

Tokens are issued elsewhere; this service only verifies the signature,
expiry and optional audience, then reads the user id claim.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import jwt

from notification_service.core.exceptions import (
    IdentityMismatchError,
    MissingAuthenticationError,
    TokenExpiredError,
    TokenInvalidError,
)
from notification_service.core.settings import get_auth_settings

if TYPE_CHECKING:
    from notification_service.core.settings.auth import AuthSettings

logger = logging.getLogger(__name__)

# Claims checked when the configured one is missing
_FALLBACK_USER_CLAIMS = ("userId", "sub", "user_id")


def verify_token(token: str | None, settings: AuthSettings | None = None) -> dict[str, Any]:
    """Decode and verify a token.

    Raises:
        MissingAuthenticationError: No token given
        TokenExpiredError: Signature valid but ``exp`` has passed
        TokenInvalidError: Any other verification failure
    """
    if not token:
        raise MissingAuthenticationError()
    settings = settings or get_auth_settings()

    options = {} if settings.jwt_audience else {"verify_aud": False}
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret.get_secret_value(),
            algorithms=settings.jwt_algorithms,
            audience=settings.jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError() from e
    except jwt.InvalidTokenError as e:
        logger.info("Token verification failed", extra={"error": str(e)})
        raise TokenInvalidError(reason=str(e)) from e
    return claims


def user_id_from_claims(claims: dict[str, Any], settings: AuthSettings | None = None) -> str | None:
    settings = settings or get_auth_settings()
    for claim in (settings.user_id_claim, *_FALLBACK_USER_CLAIMS):
        value = claims.get(claim)
        if value not in (None, ""):
            return str(value)
    return None


def authenticate_user(token: str | None, claimed_user_id: str, settings: AuthSettings | None = None) -> dict[str, Any]:
    """Verify a token and check it belongs to ``claimed_user_id``.

    Raises:
        MissingAuthenticationError, TokenExpiredError, TokenInvalidError:
            From verify_token
        IdentityMismatchError: Token user differs from the claimed one
    """
    claims = verify_token(token, settings)
    verified = user_id_from_claims(claims, settings)
    if verified is None or verified != str(claimed_user_id):
        raise IdentityMismatchError(claimed=str(claimed_user_id), verified=verified)
    return claims
