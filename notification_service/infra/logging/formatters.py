"""JSON Lines output for the queue listener's sinks."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from typing import Any

from opentelemetry import trace

# Attributes every LogRecord carries; anything else came from extra= or the context filter
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    ``fmt_keys`` maps output keys to LogRecord attributes, ``static`` adds
    fixed fields such as the service name. Timestamps are UTC with
    millisecond precision and a ``Z`` suffix. When an OpenTelemetry span is
    active its trace and span ids are attached so log lines can be joined
    with traces.

        {"level": "INFO", "logger": "ChannelDispatcher", "message": "Channel delivery finished",
         "timestamp": "2025-01-01T00:00:00.123Z", "service": "notification-service", "channel": "push"}
    """

    def __init__(self, fmt_keys: dict[str, str] | None = None, static: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.fmt_keys = fmt_keys or {"level": "levelname", "logger": "name", "message": "message"}
        self.static = static or {}

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: dict[str, Any] = {key: getattr(record, attr, None) for key, attr in self.fmt_keys.items()}
        payload["timestamp"] = (
            datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        )

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = format(span_context.trace_id, "032x")
            payload["span_id"] = format(span_context.span_id, "016x")

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_trace"] = self.formatStack(record.stack_info)

        payload.update(self.static)
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        return json.dumps(payload, ensure_ascii=False, default=str)
