"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from echo_stream.domain.cancellation import CancellationToken

if TYPE_CHECKING:
    from echo_stream.pipeline.io import BodyReader


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request head plus its unread body stream."""

    method: str
    path: str
    headers: dict[str, str]
    body: "BodyReader"
    query: str = ""
    remote_addr: str = ""
    version: str = "HTTP/1.1"
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    @property
    def content_length(self) -> int:
        """Declared Content-Length, or -1 when absent or unparseable."""
        try:
            return int(self.headers.get("content-length", "-1"))
        except ValueError:
            return -1

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def wants_close(self) -> bool:
        return should_close(self.headers, self.version)


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client.

    When ``body_iter`` is set the response is streamed with a fixed
    ``content_length`` instead of sending ``body``.
    """

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    content_length: Optional[int] = None
    on_write_error: Optional[Callable[[OSError], None]] = None

    @property
    def status_code(self) -> int:
        return int(self.status_line.split(" ", 2)[1])


def connection_tokens(headers: dict[str, str]) -> set[str]:
    """Return the lower-cased comma-separated options of the Connection header."""
    raw = headers.get("connection", "")
    return {token.strip().lower() for token in raw.split(",") if token.strip()}


def should_close(headers: dict[str, str], version: str = "HTTP/1.1") -> bool:
    """Determine whether the connection should be closed after responding.

    HTTP/1.1 keeps the connection open unless the client sends ``close``;
    HTTP/1.0 closes it unless the client asks for ``keep-alive``.
    """
    tokens = connection_tokens(headers)
    if "close" in tokens:
        return True
    if version == "HTTP/1.0":
        return "keep-alive" not in tokens
    return False
