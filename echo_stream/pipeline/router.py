"""Request routing over the fixed path set."""

import logging

from echo_stream.bootstrap.config import (
    DOWNLOAD_METHODS,
    DOWNLOAD_PATH,
    HEALTH_PATH,
    SECURITY_HEADERS,
    UPLOAD_METHODS,
    UPLOAD_PATH,
    ServerConfig,
)
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter
from echo_stream.domain.http_types import HttpRequest, HttpResponse
from echo_stream.domain.response_builders import not_found_response
from echo_stream.handlers.download import handle_download
from echo_stream.handlers.health import handle_health
from echo_stream.handlers.upload import handle_upload
from echo_stream.pipeline.validation import enforce_allowed_method

ROUTER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.pipeline.router"), {}
)


def route_request(request: HttpRequest, config: ServerConfig) -> HttpResponse:
    """Route the request to the appropriate handler and return a response."""
    if request.path == HEALTH_PATH:
        return handle_health(request)

    if request.path == DOWNLOAD_PATH:
        method_error = enforce_allowed_method(
            request, DOWNLOAD_METHODS, SECURITY_HEADERS
        )
        return method_error or handle_download(request, config)

    if request.path == UPLOAD_PATH:
        method_error = enforce_allowed_method(request, UPLOAD_METHODS, SECURITY_HEADERS)
        return method_error or handle_upload(request, config)

    ROUTER_LOGGER.info(
        "No matching route found",
        extra={
            "event": "route_not_found",
            "route": request.path,
            "method": request.method,
        },
    )
    return not_found_response(request, SECURITY_HEADERS)
