"""Per-task log context.

Fields set here (notification_id, user_id, job, connection_id, ...) are
copied onto every record emitted by the same asyncio task until they are
removed or cleared. Each task started with asyncio.create_task inherits a
snapshot of its parent's context.
"""

from __future__ import annotations

from contextvars import ContextVar
import logging
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**fields: Any) -> None:
    _log_context.set({**_log_context.get(), **fields})


def get_log_context() -> dict[str, Any]:
    return dict(_log_context.get())


def remove_from_log_context(*keys: str) -> None:
    _log_context.set({k: v for k, v in _log_context.get().items() if k not in keys})


def clear_log_context() -> None:
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Copy context fields onto the record; explicit ``extra`` values win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
