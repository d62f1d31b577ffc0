"""Tests for preference resolution and quiet hours."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from notification_service.core.exceptions import NotFoundException, ValidationException
from notification_service.features.notifications.enums import NotificationKind
from notification_service.features.notifications.models import NotificationPreference
from notification_service.features.notifications.preferences import (
    PreferenceResolver,
    default_channels_for,
    validate_preference_data,
)


async def _count_preferences(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(NotificationPreference))).scalar_one()


def _preference(**overrides) -> NotificationPreference:
    values = {
        "user_id": "u1",
        "user_type": "driver",
        "kind": NotificationKind.LOAD_STATUS.value,
        "channels": ["push", "in_app"],
        "enabled": True,
        "frequency": {"type": "immediate", "max_per_day": 100},
        "time_window": None,
    }
    values.update(overrides)
    return NotificationPreference(**values)


def test_default_channels_per_kind() -> None:
    assert default_channels_for("load_opportunity") == ["push", "in_app"]
    assert default_channels_for("driver_status") == ["in_app", "email"]
    assert default_channels_for("system_alert") == ["push", "email", "in_app"]
    # Kinds without a mapping fall back to in-app only
    assert default_channels_for("bonus_zone") == ["in_app"]


@pytest.mark.asyncio
async def test_resolve_persists_default_once(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    first = await resolver.resolve(db_session, "u1", "driver", "payment")
    second = await resolver.resolve(db_session, "u1", "driver", "payment")

    assert first.id == second.id
    assert first.channels == ["push", "email", "in_app"]
    assert first.enabled is True
    assert first.frequency == {"type": "immediate", "max_per_day": 100}
    assert first.time_window is None
    assert await _count_preferences(db_session) == 1


@pytest.mark.asyncio
async def test_resolve_is_keyed_by_user_type(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    driver = await resolver.resolve(db_session, "u1", "driver", "payment")
    carrier = await resolver.resolve(db_session, "u1", "carrier", "payment")

    assert driver.id != carrier.id
    assert await _count_preferences(db_session) == 2


@pytest.mark.asyncio
async def test_resolve_rejects_unknown_kind(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    with pytest.raises(ValidationException):
        await resolver.resolve(db_session, "u1", "driver", "not_a_kind")
    assert await _count_preferences(db_session) == 0


def test_no_window_is_always_deliverable(resolver: PreferenceResolver) -> None:
    assert resolver.is_within_quiet_hours(_preference()) is True


@pytest.mark.parametrize(
    ("hour", "minute", "expected"),
    [
        (8, 59, False),
        (9, 0, True),
        (12, 30, True),
        (17, 0, True),
        (17, 1, False),
    ],
)
def test_same_day_window(resolver: PreferenceResolver, hour: int, minute: int, expected: bool) -> None:
    preference = _preference(time_window={"start": "09:00", "end": "17:00", "timezone": "UTC"})
    now = datetime(2026, 10, 19, hour, minute, tzinfo=UTC)
    assert resolver.is_within_quiet_hours(preference, now) is expected


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(23, True), (2, True), (6, True), (7, False), (12, False)],
)
def test_window_wrapping_midnight(resolver: PreferenceResolver, hour: int, expected: bool) -> None:
    preference = _preference(time_window={"start": "22:00", "end": "06:00", "timezone": "UTC"})
    now = datetime(2026, 10, 19, hour, 0, tzinfo=UTC)
    assert resolver.is_within_quiet_hours(preference, now) is expected


def test_window_uses_preference_timezone(resolver: PreferenceResolver) -> None:
    preference = _preference(time_window={"start": "09:00", "end": "17:00", "timezone": "America/New_York"})
    # 14:00 UTC is 10:00 in New York during daylight time
    assert resolver.is_within_quiet_hours(preference, datetime(2026, 7, 1, 14, 0, tzinfo=UTC)) is True
    # 23:00 UTC is 19:00 in New York
    assert resolver.is_within_quiet_hours(preference, datetime(2026, 7, 1, 23, 0, tzinfo=UTC)) is False


def test_should_deliver_checks_enabled_channel_and_window(resolver: PreferenceResolver) -> None:
    noon = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    preference = _preference(time_window={"start": "09:00", "end": "17:00", "timezone": "UTC"})

    assert resolver.should_deliver(preference, "push", noon) is True
    assert resolver.should_deliver(preference, "email", noon) is False
    assert resolver.should_deliver(preference, "push", datetime(2026, 10, 19, 20, 0, tzinfo=UTC)) is False

    preference.enabled = False
    assert resolver.should_deliver(preference, "push", noon) is False


@pytest.mark.asyncio
async def test_determine_channels_from_preference(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    channels = await resolver.determine_channels(db_session, "u1", "driver", "driver_status")
    assert channels == ["in_app", "email"]


@pytest.mark.asyncio
async def test_high_priority_prepends_push(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    channels = await resolver.determine_channels(db_session, "u1", "driver", "driver_status", priority="high")
    assert channels == ["push", "in_app", "email"]


@pytest.mark.asyncio
async def test_high_priority_does_not_duplicate_push(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    channels = await resolver.determine_channels(db_session, "u1", "driver", "load_status", priority="high")
    assert channels == ["push", "in_app"]


@pytest.mark.asyncio
async def test_explicit_channels_win(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    channels = await resolver.determine_channels(
        db_session, "u1", "driver", "load_status", explicit=["sms", "email", "sms"]
    )
    assert channels == ["sms", "email"]
    # Explicit lists never touch the stored preference
    assert await _count_preferences(db_session) == 0


@pytest.mark.asyncio
async def test_create_upserts_on_natural_key(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    created = await resolver.create(
        db_session,
        {"user_id": "u1", "user_type": "driver", "kind": "payment", "channels": ["email"]},
    )
    updated = await resolver.create(
        db_session,
        {"user_id": "u1", "user_type": "driver", "kind": "payment", "channels": ["sms", "sms"], "enabled": False},
    )

    assert created.id == updated.id
    assert updated.channels == ["sms"]
    assert updated.enabled is False


@pytest.mark.asyncio
async def test_create_collects_validation_errors(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    with pytest.raises(ValidationException) as exc_info:
        await resolver.create(
            db_session,
            {
                "user_id": "u1",
                "user_type": "driver",
                "kind": "payment",
                "channels": ["fax"],
                "time_window": {"start": "25:00", "end": "06:00", "timezone": "Mars/Olympus"},
            },
        )
    errors = exc_info.value.extra["errors"]
    assert "Invalid channel: fax" in errors
    assert "Time window start must be HH:MM" in errors
    assert "Unknown timezone: Mars/Olympus" in errors


def test_validate_frequency() -> None:
    assert validate_preference_data({"frequency": {"type": "daily", "max_per_day": 5}}) == []
    assert validate_preference_data({"frequency": {"type": "yearly"}}) == ["Invalid frequency type: yearly"]
    assert validate_preference_data({"frequency": {"type": "daily", "max_per_day": -1}}) == [
        "Max notifications per day must be a non-negative integer"
    ]


@pytest.mark.asyncio
async def test_targeted_updates_create_missing_row(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    preference = await resolver.update_time_window(
        db_session,
        "u1",
        "driver",
        "load_status",
        {"start": "22:00", "end": "06:00", "timezone": "Europe/Paris"},
    )
    assert preference.time_window == {"start": "22:00", "end": "06:00", "timezone": "Europe/Paris"}

    preference = await resolver.update_time_window(db_session, "u1", "driver", "load_status", None)
    assert preference.time_window is None

    preference = await resolver.set_enabled(db_session, "u1", "driver", "load_status", False)
    assert preference.enabled is False
    assert await _count_preferences(db_session) == 1


@pytest.mark.asyncio
async def test_create_defaults_fills_every_kind(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    await resolver.resolve(db_session, "u1", "driver", "payment")
    preferences = await resolver.create_defaults(db_session, "u1", "driver")

    assert {p.kind for p in preferences} == {k.value for k in NotificationKind}
    assert await _count_preferences(db_session) == len(NotificationKind)


@pytest.mark.asyncio
async def test_get_and_delete(db_session: AsyncSession, resolver: PreferenceResolver) -> None:
    preference = await resolver.resolve(db_session, "u1", "driver", "payment")
    assert (await resolver.get(db_session, preference.id)).id == preference.id

    await resolver.delete(db_session, preference.id)
    with pytest.raises(NotFoundException):
        await resolver.get(db_session, preference.id)
