"""Repositories for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, select, update

from notification_service.core.database.repository import BaseRepository, SearchResult
from notification_service.features.notifications.enums import NotificationStatus
from notification_service.features.notifications.models import (
    Notification,
    NotificationPreference,
    NotificationTemplate,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

SORTABLE_FIELDS = {
    "created_at": Notification.created_at,
    "updated_at": Notification.updated_at,
    "sent_at": Notification.sent_at,
    "priority": Notification.priority,
    "status": Notification.status,
}


class NotificationRepository(BaseRepository[Notification]):
    """Repository for Notification records.

    Besides inbox queries this backs the scheduler (due rows), the retry
    sweep (failed rows) and the retention sweep (age-based delete).
    """

    def __init__(self) -> None:
        super().__init__(Notification)

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        read: bool | None = None,
        kind: str | None = None,
        channel: str | None = None,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> SearchResult[Notification]:
        """List a user's notifications with optional filters.

        Args:
            session: Database session
            user_id: Recipient user ID
            read: Filter by read flag
            kind: Filter by notification kind
            channel: Filter by primary channel
            status: Filter by delivery status
            start_date: Only notifications created at or after this time
            end_date: Only notifications created at or before this time
            sort_by: One of SORTABLE_FIELDS
            sort_direction: "asc" or "desc"
            limit: Page size
            offset: Rows to skip

        Returns:
            SearchResult with the page and total count
        """
        stmt = select(Notification).where(Notification.user_id == user_id)
        if read is not None:
            stmt = stmt.where(Notification.read.is_(read))
        if kind:
            stmt = stmt.where(Notification.kind == kind)
        if channel:
            stmt = stmt.where(Notification.channel == channel)
        if status:
            stmt = stmt.where(Notification.status == status)
        if start_date:
            stmt = stmt.where(Notification.created_at >= start_date)
        if end_date:
            stmt = stmt.where(Notification.created_at <= end_date)

        column = SORTABLE_FIELDS.get(sort_by, Notification.created_at)
        stmt = stmt.order_by(column.asc() if sort_direction == "asc" else column.desc())

        return await self.search(session, stmt, limit=limit, offset=offset)

    async def unread_count(self, session: AsyncSession, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Notification)
            .where(and_(Notification.user_id == user_id, Notification.read.is_(False)))
        )
        count = (await session.execute(stmt)).scalar_one()
        self._lazy.debug(lambda: f"db.unread_count({user_id=}) -> {count}")
        return count

    async def mark_all_as_read(self, session: AsyncSession, user_id: str, read_at: datetime) -> int:
        """Mark every unread notification of a user as read.

        Returns:
            Number of rows updated
        """
        stmt = (
            update(Notification)
            .where(and_(Notification.user_id == user_id, Notification.read.is_(False)))
            .values(read=True, read_at=read_at, updated_at=read_at)
            .execution_options(synchronize_session="fetch")
        )
        result = await session.execute(stmt)
        await session.flush()
        return result.rowcount or 0

    async def list_due(
        self,
        session: AsyncSession,
        now: datetime,
        *,
        limit: int = 100,
    ) -> Sequence[Notification]:
        """PENDING notifications whose scheduled time has passed."""
        stmt = (
            select(Notification)
            .where(
                and_(
                    Notification.status == NotificationStatus.PENDING.value,
                    Notification.scheduled_for.is_not(None),
                    Notification.scheduled_for <= now,
                )
            )
            .order_by(Notification.scheduled_for.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        items = result.scalars().all()
        self._lazy.debug(lambda: f"db.list_due(now={now.isoformat()}) -> {len(items)} due")
        return items

    async def list_retryable(
        self,
        session: AsyncSession,
        cutoff: datetime,
        max_retries: int,
        *,
        limit: int = 100,
    ) -> list[Notification]:
        """FAILED notifications newer than cutoff with retry budget left, oldest first.

        The counter is read from ``data["retry_count"]``: JSON_EXTRACT on
        SQLite, ``->>`` on PostgreSQL. A row without one has never been retried.
        """
        retry_count = func.coalesce(Notification.data["retry_count"].as_integer(), 0)
        stmt = (
            select(Notification)
            .where(
                and_(
                    Notification.status == NotificationStatus.FAILED.value,
                    Notification.created_at >= cutoff,
                    retry_count < max_retries,
                )
            )
            .order_by(Notification.created_at.asc())
            .limit(limit)
        )
        eligible = list((await session.execute(stmt)).scalars().all())
        self._lazy.debug(
            lambda: f"db.list_retryable({max_retries=}) -> {len(eligible)} eligible"
        )
        return eligible

    async def delete_older_than(self, session: AsyncSession, cutoff: datetime) -> int:
        """Delete every notification created before cutoff, regardless of status."""
        stmt = delete(Notification).where(Notification.created_at < cutoff)
        result = await session.execute(stmt)
        await session.flush()
        deleted = result.rowcount or 0
        if deleted:
            self._logger.warning(
                "Retention sweep deleted notifications",
                extra={"deleted": deleted, "cutoff": cutoff.isoformat(), "operation": "db.delete_older_than"},
            )
        return deleted

    async def count_by(
        self,
        session: AsyncSession,
        column: Any,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict[str, int]:
        """Group-by count over one notification column."""
        stmt = select(column, func.count()).group_by(column)
        if start_date:
            stmt = stmt.where(Notification.created_at >= start_date)
        if end_date:
            stmt = stmt.where(Notification.created_at <= end_date)
        result = await session.execute(stmt)
        return {str(key): count for key, count in result.all()}

    async def list_between(
        self,
        session: AsyncSession,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Sequence[Notification]:
        stmt = select(Notification)
        if start_date:
            stmt = stmt.where(Notification.created_at >= start_date)
        if end_date:
            stmt = stmt.where(Notification.created_at <= end_date)
        result = await session.execute(stmt)
        return result.scalars().all()


class PreferenceRepository(BaseRepository[NotificationPreference]):
    """Repository for NotificationPreference rows."""

    def __init__(self) -> None:
        super().__init__(NotificationPreference)

    async def get_for(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str,
        kind: str,
    ) -> NotificationPreference | None:
        stmt = select(NotificationPreference).where(
            and_(
                NotificationPreference.user_id == user_id,
                NotificationPreference.user_type == user_type,
                NotificationPreference.kind == kind,
            )
        )
        result = await session.execute(stmt)
        preference = result.scalar_one_or_none()
        self._lazy.debug(
            lambda: f"db.get_preference({user_id=}, {user_type=}, {kind=}) -> {'found' if preference else 'not found'}"
        )
        return preference

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        user_type: str | None = None,
    ) -> Sequence[NotificationPreference]:
        stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        if user_type:
            stmt = stmt.where(NotificationPreference.user_type == user_type)
        stmt = stmt.order_by(NotificationPreference.kind)
        result = await session.execute(stmt)
        return result.scalars().all()


class TemplateRepository(BaseRepository[NotificationTemplate]):
    """Repository for NotificationTemplate rows."""

    def __init__(self) -> None:
        super().__init__(NotificationTemplate)

    async def get_default(
        self,
        session: AsyncSession,
        kind: str,
        channel: str,
        locale: str,
    ) -> NotificationTemplate | None:
        """Active default template for the (kind, channel, locale) tuple."""
        stmt = select(NotificationTemplate).where(
            and_(
                NotificationTemplate.kind == kind,
                NotificationTemplate.channel == channel,
                NotificationTemplate.locale == locale,
                NotificationTemplate.is_default.is_(True),
                NotificationTemplate.is_active.is_(True),
            )
        )
        result = await session.execute(stmt)
        template = result.scalars().first()
        self._lazy.debug(
            lambda: f"db.get_default_template({kind=}, {channel=}, {locale=}) -> {'found' if template else 'not found'}"
        )
        return template

    async def list_filtered(
        self,
        session: AsyncSession,
        *,
        kind: str | None = None,
        channel: str | None = None,
        locale: str | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[NotificationTemplate]:
        stmt = select(NotificationTemplate)
        if kind:
            stmt = stmt.where(NotificationTemplate.kind == kind)
        if channel:
            stmt = stmt.where(NotificationTemplate.channel == channel)
        if locale:
            stmt = stmt.where(NotificationTemplate.locale == locale)
        if is_active is not None:
            stmt = stmt.where(NotificationTemplate.is_active.is_(is_active))
        stmt = stmt.order_by(NotificationTemplate.kind, NotificationTemplate.channel, NotificationTemplate.name)
        return await self.search(session, stmt, limit=limit, offset=offset)

    async def lock_tuple(
        self,
        session: AsyncSession,
        kind: str,
        channel: str,
        locale: str,
    ) -> Sequence[NotificationTemplate]:
        """Row-lock every template of a tuple (no-op lock on SQLite)."""
        stmt = (
            select(NotificationTemplate)
            .where(
                and_(
                    NotificationTemplate.kind == kind,
                    NotificationTemplate.channel == channel,
                    NotificationTemplate.locale == locale,
                )
            )
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def clear_defaults(
        self,
        session: AsyncSession,
        kind: str,
        channel: str,
        locale: str,
    ) -> int:
        """Unset is_default on every template of the tuple in one statement."""
        stmt = (
            update(NotificationTemplate)
            .where(
                and_(
                    NotificationTemplate.kind == kind,
                    NotificationTemplate.channel == channel,
                    NotificationTemplate.locale == locale,
                    NotificationTemplate.is_default.is_(True),
                )
            )
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def find_replacement(
        self,
        session: AsyncSession,
        template: NotificationTemplate,
    ) -> NotificationTemplate | None:
        """Another active template of the same tuple, oldest first."""
        stmt = (
            select(NotificationTemplate)
            .where(
                and_(
                    NotificationTemplate.kind == template.kind,
                    NotificationTemplate.channel == template.channel,
                    NotificationTemplate.locale == template.locale,
                    NotificationTemplate.is_active.is_(True),
                    NotificationTemplate.id != template.id,
                )
            )
            .order_by(NotificationTemplate.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()


# Factory functions for dependency injection
_notification_repository: NotificationRepository | None = None
_preference_repository: PreferenceRepository | None = None
_template_repository: TemplateRepository | None = None


def get_notification_repository() -> NotificationRepository:
    """Get NotificationRepository singleton instance."""
    global _notification_repository
    if _notification_repository is None:
        _notification_repository = NotificationRepository()
    return _notification_repository


def get_preference_repository() -> PreferenceRepository:
    """Get PreferenceRepository singleton instance."""
    global _preference_repository
    if _preference_repository is None:
        _preference_repository = PreferenceRepository()
    return _preference_repository


def get_template_repository() -> TemplateRepository:
    """Get TemplateRepository singleton instance."""
    global _template_repository
    if _template_repository is None:
        _template_repository = TemplateRepository()
    return _template_repository
