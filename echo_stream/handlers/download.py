"""Download generator: streams a requested number of bytes."""

import logging
import re
import time
import urllib.parse
from dataclasses import dataclass
from typing import Iterator

from echo_stream.bootstrap.config import SECURITY_HEADERS, ServerConfig
from echo_stream.domain.cancellation import CancellationToken
from echo_stream.domain.client_ip import resolve_client_ip
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter
from echo_stream.domain.http_types import HttpRequest, HttpResponse
from echo_stream.domain.response_builders import (
    bad_request_response,
    head_response,
    stream_response,
)

DOWNLOAD_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.handlers.download"), {}
)

SIZE_PATTERN = re.compile(r"[+-]?[0-9]+")


class InvalidDownloadSize(ValueError):
    """Raised when the size parameter is unparseable or out of range."""


@dataclass(frozen=True)
class DownloadPlan:
    """How many bytes to send and in what chunk size."""

    size: int
    buffer_size: int


def requested_size(query: str) -> str:
    """Return the first ``size`` query value, or an empty string."""
    values = urllib.parse.parse_qs(query, keep_blank_values=True).get("size")
    return values[0] if values else ""


def plan_download(raw_size: str, config: ServerConfig) -> DownloadPlan:
    """Validate ``raw_size`` against the configured bounds.

    An empty value selects the default size. The upper bound is inclusive.
    """
    if raw_size == "":
        return DownloadPlan(config.default_download_bytes, config.buffer_size)
    if not SIZE_PATTERN.fullmatch(raw_size):
        raise InvalidDownloadSize("invalid size parameter")
    size = int(raw_size)
    if size <= 0 or size > config.max_download_bytes:
        raise InvalidDownloadSize(
            f"size must be between 1 and {config.max_download_bytes} bytes"
        )
    return DownloadPlan(size, config.buffer_size)


class DownloadStream:
    """Yields a plan's bytes chunk by chunk, polling for cancellation first.

    ``bytes_sent`` only advances once the consumer asks for the next chunk,
    so it counts chunks that were actually written.
    """

    def __init__(
        self, plan: DownloadPlan, cancellation: CancellationToken, client_ip: str
    ) -> None:
        self.plan = plan
        self.cancellation = cancellation
        self.client_ip = client_ip
        self.bytes_sent = 0
        self._started = time.perf_counter()

    def _elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 3)

    def __iter__(self) -> Iterator[memoryview]:
        buffer = memoryview(bytearray(self.plan.buffer_size))
        self._started = time.perf_counter()
        DOWNLOAD_LOGGER.info(
            "Download started",
            extra={
                "event": "download_start",
                "client": self.client_ip,
                "total_size": self.plan.size,
            },
        )
        while self.bytes_sent < self.plan.size:
            if self.cancellation.is_cancelled():
                DOWNLOAD_LOGGER.info(
                    "Download cancelled",
                    extra={
                        "event": "download_disconnected",
                        "client": self.client_ip,
                        "reason": self.cancellation.reason,
                        "bytes_sent": self.bytes_sent,
                        "total_size": self.plan.size,
                    },
                )
                return
            to_write = min(len(buffer), self.plan.size - self.bytes_sent)
            yield buffer[:to_write]
            self.bytes_sent += to_write

        DOWNLOAD_LOGGER.info(
            "Download complete",
            extra={
                "event": "download_success",
                "client": self.client_ip,
                "bytes_sent": self.bytes_sent,
                "duration_ms": self._elapsed_ms(),
            },
        )

    def on_write_error(self, error: OSError) -> None:
        DOWNLOAD_LOGGER.info(
            "Download write failed",
            extra={
                "event": "download_write_error",
                "client": self.client_ip,
                "error_type": type(error).__name__,
                "error": str(error),
                "bytes_sent": self.bytes_sent,
                "total_size": self.plan.size,
            },
        )


def handle_download(request: HttpRequest, config: ServerConfig) -> HttpResponse:
    """Validate the size parameter and return a streamed response."""
    client_ip = resolve_client_ip(request.headers, request.remote_addr)
    raw_size = requested_size(request.query)
    DOWNLOAD_LOGGER.info(
        "Download request",
        extra={
            "event": "download_request",
            "client": client_ip,
            "method": request.method,
            "route": request.path,
            "requested_size": raw_size or str(config.default_download_bytes),
            "user_agent": request.user_agent,
        },
    )

    try:
        plan = plan_download(raw_size, config)
    except InvalidDownloadSize as error:
        DOWNLOAD_LOGGER.warning(
            "Download size rejected",
            extra={
                "event": "download_invalid_size",
                "client": client_ip,
                "requested_size": raw_size,
                "error": str(error),
            },
        )
        return bad_request_response(str(error), request, SECURITY_HEADERS)

    if request.method == "HEAD":
        return head_response(request, plan.size, SECURITY_HEADERS)

    stream = DownloadStream(plan, request.cancellation, client_ip)
    return stream_response(
        request,
        plan.size,
        stream,
        SECURITY_HEADERS,
        on_write_error=stream.on_write_error,
    )
