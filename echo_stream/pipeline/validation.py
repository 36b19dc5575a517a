"""Request error taxonomy and method checks."""

from typing import Optional

from echo_stream.domain.http_types import HttpRequest, HttpResponse
from echo_stream.domain.response_builders import method_not_allowed_response


class RequestEntityTooLarge(Exception):
    """Raised when a request body exceeds the configured cap."""

    def __init__(self, limit: int, bytes_read: int = 0) -> None:
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit
        self.bytes_read = bytes_read


class BodyReadError(Exception):
    """Raised when the request body stream breaks before it is complete."""

    def __init__(self, message: str, bytes_read: int = 0) -> None:
        super().__init__(message)
        self.bytes_read = bytes_read


class MalformedRequest(ValueError):
    """Raised when the request head cannot be parsed."""


class HeaderTooLarge(Exception):
    """Raised when the request head exceeds the configured limit."""


class StreamInterrupted(ConnectionError):
    """Raised when writing a streamed response body fails part way."""


def enforce_allowed_method(
    request: HttpRequest,
    allowed_methods: set[str],
    security_headers: dict[str, str],
) -> Optional[HttpResponse]:
    """Ensure the HTTP method is part of the route's allowlist."""
    if request.method in allowed_methods:
        return None

    return method_not_allowed_response(request, security_headers, allowed_methods)
