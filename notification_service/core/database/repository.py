"""Generic async repository shared by the notification, preference and template stores.

Sessions are always passed in by the caller; a repository never opens,
commits or rolls back one. Writes flush and refresh so generated columns
(id, timestamps) are populated before the caller commits.

Example:
    class TemplateRepository(BaseRepository[NotificationTemplate]):
        def __init__(self) -> None:
            super().__init__(NotificationTemplate)

    template = await repository.get_by(session, NotificationTemplate.name, "payment.email")
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import Select, func, select

from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class SearchResult(Generic[T]):
    """One page of rows plus the unpaginated total."""

    items: Sequence[T]
    total: int
    limit: int
    offset: int

    @property
    def page(self) -> int:
        return (self.offset // self.limit) + 1 if self.limit else 1


class BaseRepository(Generic[T]):
    """CRUD over one mapped model.

    Lookups return None for a missing row; turning that into a 404 is the
    service layer's job.
    """

    __slots__ = ("_lazy", "_logger", "model")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        instance = await session.get(self.model, id)
        self._lazy.debug(lambda: f"db.get: {self.model.__name__}({id}) -> {'hit' if instance else 'miss'}")
        return instance

    async def get_by(
        self,
        session: AsyncSession,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """First row whose ``attr`` equals ``value``."""
        stmt = select(self.model).where(attr == value).limit(1)
        instance = (await session.execute(stmt)).scalars().first()
        self._lazy.debug(lambda: f"db.get_by: {self.model.__name__}.{attr.key}={value!r} -> {instance is not None}")
        return instance

    async def search(
        self,
        session: AsyncSession,
        statement: Select[tuple[T]],
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[T]:
        """Run a filtered statement with limit/offset and count the full match set."""
        count_stmt = select(func.count()).select_from(statement.order_by(None).subquery())
        total = (await session.execute(count_stmt)).scalar_one()
        items = (await session.execute(statement.limit(limit).offset(offset))).scalars().all()

        self._lazy.debug(lambda: f"db.search: {self.model.__name__} -> {len(items)}/{total} (offset={offset})")
        return SearchResult(items=items, total=total, limit=limit, offset=offset)

    async def create(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={getattr(instance, 'id', None)})")
        return instance

    async def create_many(self, session: AsyncSession, instances: list[T]) -> list[T]:
        session.add_all(instances)
        await session.flush()
        for instance in instances:
            await session.refresh(instance)
        self._lazy.debug(lambda: f"db.create_many: {self.model.__name__} x{len(instances)}")
        return instances

    async def save(self, session: AsyncSession, instance: T) -> T:
        """Flush changes made to a tracked row and reload server-side values."""
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        entity_id = getattr(instance, "id", None)
        await session.delete(instance)
        await session.flush()
        self._logger.info(
            "Row deleted",
            extra={"entity": self.model.__name__, "id": str(entity_id), "operation": "db.delete"},
        )


__all__ = [
    "BaseRepository",
    "SearchResult",
]
