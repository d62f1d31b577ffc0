"""Column types that behave the same on PostgreSQL and SQLite."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.types import TypeDecorator

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.sql.type_api import TypeEngine

JSONType = JSONB().with_variant(JSON(), "sqlite")


class StringArray(TypeDecorator):
    """``list[str]`` column: native ARRAY on PostgreSQL, a JSON-encoded TEXT elsewhere.

    Used for preference channels and template variable names. NULL reads
    back as an empty list.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(String(100)))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        items = [str(item) for item in value]
        return items if dialect.name == "postgresql" else json.dumps(items)

    def process_result_value(self, value: Any, dialect: Dialect) -> list[str]:
        if not value:
            return []
        return list(value) if dialect.name == "postgresql" else json.loads(value)
