"""Liveness check handler."""

import logging

from echo_stream.bootstrap.config import SECURITY_HEADERS
from echo_stream.domain.client_ip import resolve_client_ip
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter
from echo_stream.domain.http_types import HttpRequest, HttpResponse
from echo_stream.domain.response_builders import ok_response

HEALTH_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.handlers.health"), {}
)


def handle_health(request: HttpRequest) -> HttpResponse:
    """Answer 200 ``healthy`` for any method, query or headers."""
    HEALTH_LOGGER.info(
        "Health check",
        extra={
            "event": "health_check",
            "client": resolve_client_ip(request.headers, request.remote_addr),
            "method": request.method,
            "route": request.path,
            "user_agent": request.user_agent,
        },
    )
    return ok_response("healthy", request, SECURITY_HEADERS)
