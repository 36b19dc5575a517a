"""Pure HTTP response builders."""

from typing import Optional

from echo_stream.domain.http_types import HttpRequest, HttpResponse

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
BINARY_CONTENT_TYPE = "application/octet-stream"


def _wants_close(request: Optional[HttpRequest]) -> bool:
    return request.wants_close if request is not None else True


def text_response(
    status_line: str,
    message: str,
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
    close_connection: Optional[bool] = None,
) -> HttpResponse:
    """Return a text/plain response with a fixed body."""
    headers = {"Content-Type": TEXT_CONTENT_TYPE, **security_headers}
    if close_connection is None:
        close_connection = _wants_close(request)
    return HttpResponse(status_line, headers, message.encode(), close_connection)


def ok_response(
    message: str, request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 200 text response reusing the connection preference."""
    return text_response("HTTP/1.1 200 OK", message, request, security_headers)


def stream_response(
    request: HttpRequest,
    content_length: int,
    body_iter,
    security_headers: dict[str, str],
    on_write_error=None,
) -> HttpResponse:
    """Return a 200 binary response streamed with a fixed Content-Length."""
    headers = {"Content-Type": BINARY_CONTENT_TYPE, **security_headers}
    return HttpResponse(
        "HTTP/1.1 200 OK",
        headers,
        b"",
        request.wants_close,
        body_iter=body_iter,
        content_length=content_length,
        on_write_error=on_write_error,
    )


def head_response(
    request: HttpRequest, content_length: int, security_headers: dict[str, str]
) -> HttpResponse:
    """Return the headers a streamed response would carry, without a body."""
    headers = {"Content-Type": BINARY_CONTENT_TYPE, **security_headers}
    return HttpResponse(
        "HTTP/1.1 200 OK",
        headers,
        b"",
        request.wants_close,
        content_length=content_length,
    )


def bad_request_response(
    message: str, request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 400 response honoring the caller's connection preference."""
    return text_response(
        "HTTP/1.1 400 Bad Request", message, request, security_headers
    )


def not_found_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return text_response(
        "HTTP/1.1 404 Not Found", "404 page not found", request, security_headers
    )


def method_not_allowed_response(
    request: HttpRequest, security_headers: dict[str, str], allowed_methods
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = text_response(
        "HTTP/1.1 405 Method Not Allowed",
        "method not allowed",
        request,
        security_headers,
    )
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return text_response(
        "HTTP/1.1 413 Payload Too Large",
        "Request too large or processing error",
        None,
        security_headers,
        close_connection=True,
    )


def header_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 431 response for oversized request heads."""
    return text_response(
        "HTTP/1.1 431 Request Header Fields Too Large",
        "request header fields too large",
        None,
        security_headers,
        close_connection=True,
    )


def draining_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    return text_response(
        "HTTP/1.1 503 Service Unavailable",
        "draining",
        None,
        security_headers,
        close_connection=True,
    )
