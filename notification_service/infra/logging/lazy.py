"""Deferred debug messages.

Repositories log every query at DEBUG with f-strings that touch ORM
state. Passing a lambda keeps that formatting off the hot path unless
DEBUG is actually enabled.
"""

from __future__ import annotations

import logging
from typing import Any


class LazyLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose message and args may be zero-argument callables.

    Example:
        lazy = get_lazy_logger("repository.Notification")
        lazy.debug(lambda: f"db.list_due -> {len(rows)} rows")
    """

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        if not self.isEnabledFor(level):
            return
        if callable(msg):
            msg = msg()
        args = tuple(arg() if callable(arg) else arg for arg in args)
        super().log(level, msg, *args, **kwargs)

    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)


def get_lazy_logger(name: str, **context: Any) -> LazyLoggerAdapter:
    return LazyLoggerAdapter(logging.getLogger(name), context)
