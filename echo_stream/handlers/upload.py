"""Upload sink: reads and discards a capped request body."""

import logging
import time

from echo_stream.bootstrap.config import SECURITY_HEADERS, ServerConfig
from echo_stream.domain.client_ip import resolve_client_ip
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter
from echo_stream.domain.http_types import HttpRequest, HttpResponse
from echo_stream.domain.response_builders import entity_too_large_response, ok_response
from echo_stream.pipeline.io import BodyReader
from echo_stream.pipeline.validation import BodyReadError, RequestEntityTooLarge

UPLOAD_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.handlers.upload"), {}
)


def discard_body(body: BodyReader, limit: int, buffer_size: int) -> int:
    """Read ``body`` to the end without keeping it and return the byte count.

    At most ``limit + 1`` bytes are read; seeing that extra byte raises
    RequestEntityTooLarge. Transport faults surface as BodyReadError.
    """
    total = 0
    while True:
        wanted = min(buffer_size, limit + 1 - total)
        try:
            chunk = body.read(wanted)
        except BodyReadError as error:
            error.bytes_read = total
            raise
        except OSError as error:
            raise BodyReadError(str(error) or type(error).__name__, total) from error
        if not chunk:
            return total
        total += len(chunk)
        if total > limit:
            raise RequestEntityTooLarge(limit, total)


def handle_upload(request: HttpRequest, config: ServerConfig) -> HttpResponse:
    """Consume an upload and answer 200 ``ok``, or 413 when over the cap."""
    client_ip = resolve_client_ip(request.headers, request.remote_addr)
    UPLOAD_LOGGER.info(
        "Upload request",
        extra={
            "event": "upload_request",
            "client": client_ip,
            "method": request.method,
            "route": request.path,
            "content_length": request.content_length,
            "user_agent": request.user_agent,
        },
    )

    if request.content_length > config.max_upload_bytes:
        UPLOAD_LOGGER.warning(
            "Upload rejected by declared length",
            extra={
                "event": "upload_error",
                "client": client_ip,
                "error": "declared content length exceeds limit",
                "limit": config.max_upload_bytes,
                "bytes_read": 0,
            },
        )
        return entity_too_large_response(SECURITY_HEADERS)

    started = time.perf_counter()
    try:
        bytes_received = discard_body(
            request.body, config.max_upload_bytes, config.buffer_size
        )
    except (RequestEntityTooLarge, BodyReadError) as error:
        UPLOAD_LOGGER.warning(
            "Upload failed",
            extra={
                "event": "upload_error",
                "client": client_ip,
                "error": str(error),
                "error_type": type(error).__name__,
                "limit": config.max_upload_bytes,
                "bytes_read": error.bytes_read,
            },
        )
        return entity_too_large_response(SECURITY_HEADERS)

    UPLOAD_LOGGER.info(
        "Upload complete",
        extra={
            "event": "upload_success",
            "client": client_ip,
            "bytes_received": bytes_received,
            "duration_ms": round((time.perf_counter() - started) * 1000, 3),
        },
    )
    return ok_response("ok", request, SECURITY_HEADERS)
