"""Database building blocks: declarative base, types and repository."""

from __future__ import annotations

from .base import Base, TimestampedBase, TimestampMixin, UUIDv7PKMixin, as_utc, utcnow
from .repository import BaseRepository, SearchResult
from .types import JSONType, StringArray

__all__ = [
    "Base",
    "BaseRepository",
    "JSONType",
    "SearchResult",
    "StringArray",
    "TimestampMixin",
    "TimestampedBase",
    "UUIDv7PKMixin",
    "as_utc",
    "utcnow",
]
