"""Per-request correlation IDs carried through contextvars.

Every request handled by a worker thread runs inside a
:func:`request_scope`; log records emitted through
:class:`CorrelationLoggerAdapter` pick the active ID up automatically and
the response writer echoes it back as ``X-Request-ID``.
"""

import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping, Optional

NO_CORRELATION_ID = "-"
MAX_CORRELATION_ID_LENGTH = 128
PACKAGE_PREFIX = "echo_stream."

_active_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "echo_stream_request_id", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _active_request_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _active_request_id.set(correlation_id)


def clear_correlation_id() -> None:
    _active_request_id.set(None)


@contextmanager
def request_scope() -> Iterator[str]:
    """Bind a fresh ID for one request and restore the previous one on exit.

    The ID may be swapped for a client supplied one while the scope is open
    (see :func:`accept_incoming_correlation_id`).
    """
    token = _active_request_id.set(generate_correlation_id())
    try:
        yield _active_request_id.get() or NO_CORRELATION_ID
    finally:
        _active_request_id.reset(token)


def accept_incoming_correlation_id(value: Optional[str]) -> bool:
    """Adopt a client supplied X-Request-ID when it is printable and short."""
    candidate = (value or "").strip()
    usable = (
        0 < len(candidate) <= MAX_CORRELATION_ID_LENGTH and candidate.isprintable()
    )
    if usable:
        _active_request_id.set(candidate)
    return usable


def component_name(logger_name: str) -> str:
    """Strip the package prefix so log lines read ``handlers.download``."""
    if logger_name.startswith(PACKAGE_PREFIX):
        return logger_name[len(PACKAGE_PREFIX) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Stamp records with the active request ID and the emitting component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {
            **kwargs.get("extra", {}),
            "correlation_id": get_correlation_id() or NO_CORRELATION_ID,
            "component": component_name(self.logger.name),
        }
        return msg, kwargs
