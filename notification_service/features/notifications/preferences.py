"""Preference resolution: which channels apply, and when.

``resolve`` is a side-effecting read. When no preference row exists for
(user, role, kind) a default row is written before it is returned, so a
first lookup always leaves a stored preference behind.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytz
from sqlalchemy.exc import IntegrityError

from notification_service.core.exceptions import NotFoundException, ValidationException
from notification_service.core.services.base import BaseService
from notification_service.features.notifications.enums import (
    LIVE_PUSH_CHANNEL,
    ChannelType,
    FrequencyType,
    NotificationKind,
    Priority,
    is_valid,
)
from notification_service.features.notifications.models import NotificationPreference
from notification_service.features.notifications.repository import (
    PreferenceRepository,
    get_preference_repository,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_CHANNELS: dict[NotificationKind, tuple[ChannelType, ...]] = {
    NotificationKind.LOAD_OPPORTUNITY: (ChannelType.PUSH, ChannelType.IN_APP),
    NotificationKind.LOAD_STATUS: (ChannelType.PUSH, ChannelType.IN_APP),
    NotificationKind.ACHIEVEMENT: (ChannelType.PUSH, ChannelType.IN_APP),
    NotificationKind.DRIVER_STATUS: (ChannelType.IN_APP, ChannelType.EMAIL),
    NotificationKind.MARKET_INTELLIGENCE: (ChannelType.IN_APP, ChannelType.EMAIL),
    NotificationKind.SYSTEM_ALERT: (ChannelType.PUSH, ChannelType.EMAIL, ChannelType.IN_APP),
    NotificationKind.PAYMENT: (ChannelType.PUSH, ChannelType.EMAIL, ChannelType.IN_APP),
}
FALLBACK_CHANNELS: tuple[ChannelType, ...] = (ChannelType.IN_APP,)

DEFAULT_FREQUENCY: dict[str, Any] = {"type": FrequencyType.IMMEDIATE.value, "max_per_day": 100}

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def default_channels_for(kind: str) -> list[str]:
    """Default channel list for a notification kind."""
    channels = DEFAULT_CHANNELS.get(NotificationKind(kind), FALLBACK_CHANNELS)
    return [c.value for c in channels]


def _minute_of_day(value: str) -> int:
    match = _HHMM.match(value)
    if match is None:
        msg = f"Invalid time of day: {value!r}"
        raise ValueError(msg)
    return int(match.group(1)) * 60 + int(match.group(2))


def validate_preference_data(data: dict[str, Any]) -> list[str]:
    """Collect validation errors for preference create/update payloads."""
    errors: list[str] = []

    if "kind" in data and not is_valid(NotificationKind, data["kind"]):
        errors.append(f"Invalid notification kind: {data['kind']}")

    channels = data.get("channels")
    if channels is not None:
        errors.extend(
            f"Invalid channel: {channel}"
            for channel in channels
            if not is_valid(ChannelType, channel)
        )

    frequency = data.get("frequency")
    if frequency is not None:
        if not frequency.get("type"):
            errors.append("Frequency type is required")
        elif not is_valid(FrequencyType, frequency["type"]):
            errors.append(f"Invalid frequency type: {frequency['type']}")
        max_per_day = frequency.get("max_per_day")
        if max_per_day is not None and (not isinstance(max_per_day, int) or max_per_day < 0):
            errors.append("Max notifications per day must be a non-negative integer")

    window = data.get("time_window")
    if window is not None:
        start, end = window.get("start"), window.get("end")
        if not start or not end:
            errors.append("Time window must include start and end times")
        else:
            for label, value in (("start", start), ("end", end)):
                if not _HHMM.match(str(value)):
                    errors.append(f"Time window {label} must be HH:MM")
        if not window.get("timezone"):
            errors.append("Time window must include a timezone")
        elif window["timezone"] not in pytz.all_timezones_set:
            errors.append(f"Unknown timezone: {window['timezone']}")

    return errors


class PreferenceResolver(BaseService):
    """Resolve and manage per-user delivery preferences.

    Provides:
    - resolve(): stored preference, or a persisted default (side effect)
    - is_within_quiet_hours() / should_deliver(): delivery gating
    - determine_channels(): explicit override, preference, high-priority escalation
    - CRUD plus targeted updates used by the preference endpoints
    """

    def __init__(self, repository: PreferenceRepository | None = None) -> None:
        super().__init__()
        self._repository = repository or get_preference_repository()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
    ) -> NotificationPreference:
        """Return the stored preference or persist and return the default.

        Raises:
            ValidationException: If kind is not a known notification kind.
        """
        if not is_valid(NotificationKind, kind):
            raise ValidationException(
                detail=f"Invalid notification kind: {kind}",
                extra={"kind": kind},
            )

        preference = await self._repository.get_for(session, user_id, user_type, kind)
        if preference is not None:
            return preference

        preference = self._build_default(user_id, user_type, kind)
        try:
            async with session.begin_nested():
                await self._repository.create(session, preference)
        except IntegrityError:
            # Lost the race against a concurrent first resolution
            existing = await self._repository.get_for(session, user_id, user_type, kind)
            if existing is None:
                raise
            return existing

        self.logger.info(
            "Created default notification preference",
            extra={"user_id": user_id, "user_type": user_type, "kind": kind},
        )
        return preference

    def is_within_quiet_hours(
        self,
        preference: NotificationPreference,
        now: datetime | None = None,
    ) -> bool:
        """Whether ``now`` falls inside the preference's delivery window.

        Returns True when no window is configured. Windows whose end is
        earlier than their start wrap past midnight.
        """
        window = preference.time_window
        if not window:
            return True

        try:
            tz = pytz.timezone(window.get("timezone") or "UTC")
        except pytz.UnknownTimeZoneError:
            self.logger.warning(
                "Unknown timezone on preference, using UTC",
                extra={"preference_id": str(preference.id), "timezone": window.get("timezone")},
            )
            tz = pytz.utc

        current = (now or datetime.now(UTC)).astimezone(tz)
        minute = current.hour * 60 + current.minute
        start = _minute_of_day(window["start"])
        end = _minute_of_day(window["end"])

        if start <= end:
            return start <= minute <= end
        return minute >= start or minute <= end

    def should_deliver(
        self,
        preference: NotificationPreference,
        channel: str,
        now: datetime | None = None,
    ) -> bool:
        """False if disabled, if the channel is not listed, or outside the window."""
        if not preference.enabled:
            return False
        if channel not in preference.channels:
            return False
        return self.is_within_quiet_hours(preference, now)

    async def determine_channels(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
        priority: str = Priority.MEDIUM.value,
        explicit: Sequence[str] | None = None,
    ) -> list[str]:
        """Channels to dispatch to, in order.

        An explicit list wins over the stored preference. High priority
        notifications always include the live-push channel, prepended when
        missing.
        """
        if explicit:
            channels = list(dict.fromkeys(explicit))
        else:
            preference = await self.resolve(session, user_id, user_type, kind)
            channels = list(dict.fromkeys(preference.channels)) or default_channels_for(kind)

        if priority == Priority.HIGH.value and LIVE_PUSH_CHANNEL.value not in channels:
            channels.insert(0, LIVE_PUSH_CHANNEL.value)
        return channels

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, preference_id: UUID) -> NotificationPreference:
        preference = await self._repository.get(session, preference_id)
        if preference is None:
            raise NotFoundException(
                detail=f"Notification preference {preference_id} not found",
                type="preference-not-found",
                extra={"preference_id": str(preference_id)},
            )
        return preference

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str | None = None,
    ) -> Sequence[NotificationPreference]:
        return await self._repository.list_for_user(session, user_id, user_type)

    async def create(self, session: AsyncSession, data: dict[str, Any]) -> NotificationPreference:
        """Create a preference, or update the existing row for the same key."""
        errors = validate_preference_data(data)
        if errors:
            raise ValidationException(detail="Invalid preference data", extra={"errors": errors})

        existing = await self._repository.get_for(
            session, data["user_id"], data["user_type"], data["kind"]
        )
        if existing is not None:
            return await self._apply(session, existing, data)

        preference = self._build_default(data["user_id"], data["user_type"], data["kind"])
        for field in ("channels", "enabled", "frequency", "time_window"):
            if field in data and data[field] is not None:
                setattr(preference, field, data[field])
        return await self._repository.create(session, preference)

    async def update(
        self,
        session: AsyncSession,
        preference_id: UUID,
        data: dict[str, Any],
    ) -> NotificationPreference:
        errors = validate_preference_data(data)
        if errors:
            raise ValidationException(detail="Invalid preference data", extra={"errors": errors})
        preference = await self.get(session, preference_id)
        return await self._apply(session, preference, data)

    async def delete(self, session: AsyncSession, preference_id: UUID) -> None:
        preference = await self.get(session, preference_id)
        await self._repository.delete(session, preference)

    async def set_enabled(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
        enabled: bool,
    ) -> NotificationPreference:
        preference = await self.resolve(session, user_id, user_type, kind)
        return await self._apply(session, preference, {"enabled": enabled})

    async def update_channels(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
        channels: list[str],
    ) -> NotificationPreference:
        return await self._targeted_update(session, user_id, user_type, kind, {"channels": channels})

    async def update_frequency(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
        frequency: dict[str, Any],
    ) -> NotificationPreference:
        return await self._targeted_update(session, user_id, user_type, kind, {"frequency": frequency})

    async def update_time_window(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
        time_window: dict[str, Any] | None,
    ) -> NotificationPreference:
        return await self._targeted_update(session, user_id, user_type, kind, {"time_window": time_window})

    async def create_defaults(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
    ) -> list[NotificationPreference]:
        """Create the missing default preference for every kind.

        Runs inside one savepoint so either every missing row is written
        or none is.
        """
        created: list[NotificationPreference] = []
        async with session.begin_nested():
            for kind in NotificationKind:
                existing = await self._repository.get_for(session, user_id, user_type, kind.value)
                if existing is None:
                    created.append(self._build_default(user_id, user_type, kind.value))
            if created:
                await self._repository.create_many(session, created)

        self.logger.info(
            "Created default notification preferences",
            extra={"user_id": user_id, "user_type": user_type, "created": len(created)},
        )
        return await self.list_for_user(session, user_id, user_type)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _targeted_update(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
        changes: dict[str, Any],
    ) -> NotificationPreference:
        errors = validate_preference_data(changes)
        if errors:
            raise ValidationException(detail="Invalid preference data", extra={"errors": errors})
        preference = await self.resolve(session, user_id, user_type, kind)
        return await self._apply(session, preference, changes)

    async def _apply(
        self,
        session: AsyncSession,
        preference: NotificationPreference,
        changes: dict[str, Any],
    ) -> NotificationPreference:
        for field in ("channels", "enabled", "frequency", "time_window"):
            if field in changes:
                value = changes[field]
                if field == "channels" and value is not None:
                    value = list(dict.fromkeys(value))
                if field in ("channels", "enabled", "frequency") and value is None:
                    continue
                setattr(preference, field, value)
        return await self._repository.save(session, preference)

    @staticmethod
    def _build_default(user_id: str, user_type: str, kind: str) -> NotificationPreference:
        return NotificationPreference(
            user_id=user_id,
            user_type=user_type,
            kind=kind,
            channels=default_channels_for(kind),
            enabled=True,
            frequency=dict(DEFAULT_FREQUENCY),
            time_window=None,
        )


_resolver: PreferenceResolver | None = None


def get_preference_resolver() -> PreferenceResolver:
    """Get PreferenceResolver singleton instance."""
    global _resolver
    if _resolver is None:
        _resolver = PreferenceResolver()
    return _resolver
