"""Tests for access token verification."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
from pydantic import SecretStr
import pytest

from notification_service.core.exceptions import (
    IdentityMismatchError,
    MissingAuthenticationError,
    TokenExpiredError,
    TokenInvalidError,
)
from notification_service.core.settings.auth import AuthSettings
from notification_service.infra.auth import authenticate_user, user_id_from_claims, verify_token

SECRET = "unit-secret"


@pytest.fixture
def auth_settings() -> AuthSettings:
    return AuthSettings(jwt_secret=SecretStr(SECRET))


def _token(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def test_valid_token_returns_claims(auth_settings: AuthSettings) -> None:
    claims = verify_token(_token({"userId": "u1", "role": "driver"}), auth_settings)
    assert claims["userId"] == "u1"


def test_missing_token(auth_settings: AuthSettings) -> None:
    with pytest.raises(MissingAuthenticationError):
        verify_token(None, auth_settings)
    with pytest.raises(MissingAuthenticationError):
        verify_token("", auth_settings)


def test_expired_token(auth_settings: AuthSettings) -> None:
    expired = _token({"userId": "u1", "exp": datetime.now(UTC) - timedelta(minutes=1)})
    with pytest.raises(TokenExpiredError):
        verify_token(expired, auth_settings)


@pytest.mark.parametrize("token", ["garbage", _token({"userId": "u1"}, secret="another-secret")])
def test_invalid_token(auth_settings: AuthSettings, token: str) -> None:
    with pytest.raises(TokenInvalidError):
        verify_token(token, auth_settings)


def test_audience_is_checked_when_configured() -> None:
    settings = AuthSettings(jwt_secret=SecretStr(SECRET), jwt_audience="notifications")

    assert verify_token(_token({"userId": "u1", "aud": "notifications"}), settings)["userId"] == "u1"
    with pytest.raises(TokenInvalidError):
        verify_token(_token({"userId": "u1", "aud": "billing"}), settings)


@pytest.mark.parametrize(
    ("claims", "expected"),
    [
        ({"userId": "u1", "sub": "other"}, "u1"),
        ({"sub": 42}, "42"),
        ({"user_id": "u3"}, "u3"),
        ({"userId": "", "sub": "u4"}, "u4"),
        ({"role": "driver"}, None),
    ],
)
def test_user_id_claim_fallbacks(auth_settings: AuthSettings, claims: dict, expected: str | None) -> None:
    assert user_id_from_claims(claims, auth_settings) == expected


def test_authenticate_user_checks_identity(auth_settings: AuthSettings) -> None:
    token = _token({"userId": "u1"})

    assert authenticate_user(token, "u1", auth_settings)["userId"] == "u1"

    with pytest.raises(IdentityMismatchError) as exc_info:
        authenticate_user(token, "u2", auth_settings)
    assert exc_info.value.extra == {"claimed_user_id": "u2", "token_user_id": "u1"}
    assert exc_info.value.status_code == 401
