"""Process-wide logging setup.

The root logger carries one QueueHandler; a QueueListener thread fans the
records out to the console and, optionally, a rotating JSONL file. Request
handlers, scheduler jobs and websocket loops therefore never block on
stream I/O.
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

from notification_service.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from collections.abc import Iterable

    from notification_service.core.settings.logs import LoggingSettings

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None
_configured = False

_PLAIN_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def shutdown() -> None:
    """Drain the queue and detach the root QueueHandler."""
    global _listener, _queue_handler

    if _listener is not None:
        _listener.stop()
        _listener = None
    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None


def setup_logging(log_settings: LoggingSettings | None = None, *, force: bool = False) -> None:
    """Configure logging from LOG_ settings, once per process unless forced."""
    global _configured

    if _configured and not force:
        return
    if log_settings is None:
        from notification_service.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**log_settings.to_logging_kwargs())
    _configured = True


def configure_logging(
    level: str = "INFO",
    *,
    json_logs: bool = True,
    console: bool = True,
    file_path: str | Path | None = None,
    max_bytes: int = 10_485_760,
    backup_count: int = 5,
    include_context: bool = True,
    capture_warnings: bool = True,
    quiet: Iterable[str] = (),
    service_name: str = "notification-service",
) -> None:
    global _listener, _queue_handler

    shutdown()
    logging.captureWarnings(capture_warnings)

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {},
        "root": {"level": level.upper(), "handlers": [], "filters": []},
        "loggers": {name: {"level": "WARNING"} for name in quiet},
    }
    if include_context:
        config["filters"]["context"] = {"()": "notification_service.infra.logging.context.ContextInjectingFilter"}
        config["root"]["filters"].append("context")
    logging.config.dictConfig(config)

    formatter = _formatter(json_logs, service_name)
    sinks = _sinks(console, file_path, max_bytes, backup_count)
    for sink in sinks:
        sink.setFormatter(formatter)

    queue: Queue[logging.LogRecord] = Queue()
    if sinks:
        _listener = QueueListener(queue, *sinks, respect_handler_level=True)
        _listener.start()
        atexit.register(shutdown)
    _queue_handler = QueueHandler(queue)
    logging.getLogger().addHandler(_queue_handler)


def _sinks(console: bool, file_path: str | Path | None, max_bytes: int, backup_count: int) -> list[logging.Handler]:
    sinks: list[logging.Handler] = []
    if console:
        sinks.append(logging.StreamHandler())
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"))
    return sinks


def _formatter(json_logs: bool, service_name: str) -> logging.Formatter:
    if not json_logs:
        return logging.Formatter(_PLAIN_FORMAT)
    return JSONFormatter(
        fmt_keys={"level": "levelname", "logger": "name", "message": "message"},
        static={"service": service_name},
    )
