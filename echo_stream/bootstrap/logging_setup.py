"""Structured logging for the echo-stream server.

Records are rendered one JSON object per line, or as plain text when
JSON is switched off. Only whitelisted ``extra`` fields are emitted;
string values are redacted when they look like credentials and clipped
when a client sends something unreasonably long.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from echo_stream.domain.correlation_id import (
    NO_CORRELATION_ID,
    CorrelationLoggerAdapter,
    component_name,
)

LOGGER_NAME = "echo_stream"
PLAIN_FORMAT = "%(asctime)s %(levelname)-8s [%(correlation_id)s] %(name)s :: %(message)s"
ROTATE_AT_BYTES = 10 * 1024 * 1024
ROTATED_FILES_KEPT = 5
MAX_FIELD_CHARS = 512
REDACTED = "[REDACTED]"

REDACTION_PATTERNS = (
    re.compile(r"(?i)authorization|token|signature|password|secret|api[_-]?key|\bkey\b"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}(?![A-Za-z0-9+/=])"),
)

REQUEST_FIELDS = (
    "client",
    "method",
    "route",
    "status_code",
    "user_agent",
    "content_length",
    "duration_ms",
    "requests_served",
)
TRANSFER_FIELDS = (
    "requested_size",
    "total_size",
    "limit",
    "bytes_received",
    "bytes_read",
    "bytes_sent",
    "reason",
)
SERVER_FIELDS = (
    "host",
    "port",
    "pid",
    "endpoints",
    "state",
    "signal",
    "remaining_connections",
    "shutdown_grace_seconds",
    "read_timeout",
    "write_timeout",
    "idle_timeout",
    "log_level",
    "log_destination",
    "log_format",
    "destination",
    "use_json",
    "error",
    "error_type",
)
EXTRA_KEYS = REQUEST_FIELDS + TRANSFER_FIELDS + SERVER_FIELDS

# Free-form client text that is expected to contain long tokens.
VERBATIM_FIELDS = frozenset({"user_agent"})


def redact_sensitive(value: str) -> str:
    """Return ``value`` unless it resembles a credential or secret."""
    if value and any(pattern.search(value) for pattern in REDACTION_PATTERNS):
        return REDACTED
    return value


def _clean(key: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if key not in VERBATIM_FIELDS:
        value = redact_sensitive(value)
    if len(value) > MAX_FIELD_CHARS:
        value = value[:MAX_FIELD_CHARS] + "..."
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Give records logged outside an adapter a placeholder correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = getattr(record, "correlation_id", NO_CORRELATION_ID)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as a single sorted-key JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc)
        payload = {
            "timestamp": timestamp.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "component": getattr(record, "component", component_name(record.name)),
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            payload["event"] = event
        payload.update(
            (key, _clean(key, getattr(record, key)))
            for key in EXTRA_KEYS
            if hasattr(record, key)
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def _open_destination(destination: Optional[str]) -> logging.Handler:
    if not destination or destination.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path, maxBytes=ROTATE_AT_BYTES, backupCount=ROTATED_FILES_KEPT
    )


def _build_handler(
    destination: Optional[str], level: int, use_json: bool = True
) -> logging.Handler:
    """Return a handler for ``destination`` with formatter and filter attached."""
    handler = _open_destination(destination)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> CorrelationLoggerAdapter:
    """Route the ``echo_stream`` logger tree to a single fresh handler.

    Any handler installed by a previous call is closed first, so calling
    this again (as the tests do) never duplicates output.
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False
    while logger.handlers:
        stale = logger.handlers[0]
        logger.removeHandler(stale)
        stale.close()
    logger.addHandler(_build_handler(destination, numeric_level, use_json))

    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "use_json": use_json,
        },
    )
    return adapter
