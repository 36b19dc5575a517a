"""HTTP Input/Output operations."""

import logging
import socket
import time
import urllib.parse
from functools import partial
from typing import Callable, Optional, Tuple

from echo_stream.bootstrap.config import HEADER_DELIMITER
from echo_stream.domain.correlation_id import (
    CorrelationLoggerAdapter,
    accept_incoming_correlation_id,
    get_correlation_id,
)
from echo_stream.domain.http_types import HttpRequest, HttpResponse
from echo_stream.pipeline.validation import (
    BodyReadError,
    HeaderTooLarge,
    MalformedRequest,
    StreamInterrupted,
)

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("echo_stream.io"), {})

RECV_SIZE = 4096
CRLF = b"\r\n"
MAX_CHUNK_LINE_BYTES = 4096
CONTINUE_RESPONSE = b"HTTP/1.1 100 Continue\r\n\r\n"


def recv_with_deadline(
    client_socket: socket.socket, deadline_ns: Optional[int], size: int = RECV_SIZE
) -> bytes:
    """Receive data from socket with a deadline, raising TimeoutError if exceeded."""
    if deadline_ns is not None:
        remaining_ns = deadline_ns - time.monotonic_ns()
        if remaining_ns <= 0:
            raise TimeoutError("Request deadline exceeded")
        client_socket.settimeout(remaining_ns / 1_000_000_000)
    return client_socket.recv(size)


def send_with_deadline(
    client_socket: socket.socket, data, deadline_ns: Optional[int]
) -> None:
    """Send all of ``data`` before the deadline, raising TimeoutError otherwise."""
    if deadline_ns is not None:
        remaining_ns = deadline_ns - time.monotonic_ns()
        if remaining_ns <= 0:
            raise TimeoutError("Response deadline exceeded")
        client_socket.settimeout(remaining_ns / 1_000_000_000)
    client_socket.sendall(data)


class BodyReader:
    """Request body stream. The base class is an empty body."""

    def __init__(self, leftover: bytes = b"") -> None:
        self._leftover = leftover
        self.bytes_read = 0
        self.before_first_read: Optional[Callable[[], None]] = None

    def _start(self) -> None:
        hook, self.before_first_read = self.before_first_read, None
        if hook is not None:
            hook()

    def read(self, size: int) -> bytes:  # pylint: disable=unused-argument
        """Return up to ``size`` body bytes, or b"" once the body is exhausted."""
        return b""

    @property
    def finished(self) -> bool:
        return True

    def leftover(self) -> bytes:
        """Bytes received past the end of the body (a pipelined request)."""
        return self._leftover


class FixedLengthBodyReader(BodyReader):
    """Reads exactly ``length`` bytes declared by Content-Length."""

    def __init__(
        self,
        client_socket: socket.socket,
        buffered: bytes,
        length: int,
        deadline_ns: Optional[int],
    ) -> None:
        super().__init__(buffered[length:])
        self._socket = client_socket
        self._buffer = buffered[:length]
        self._remaining = length
        self._deadline_ns = deadline_ns

    def read(self, size: int) -> bytes:
        if self._remaining == 0:
            return b""
        self._start()
        wanted = min(size, self._remaining)
        if self._buffer:
            data = self._buffer[:wanted]
            self._buffer = self._buffer[len(data) :]
        else:
            data = recv_with_deadline(self._socket, self._deadline_ns, wanted)
            if not data:
                raise BodyReadError(
                    "client closed connection before body completed",
                    self.bytes_read,
                )
        self._remaining -= len(data)
        self.bytes_read += len(data)
        return data

    @property
    def finished(self) -> bool:
        return self._remaining == 0


class ChunkedBodyReader(BodyReader):
    """Decodes a Transfer-Encoding: chunked body, discarding extensions and trailers."""

    def __init__(
        self,
        client_socket: socket.socket,
        buffered: bytes,
        deadline_ns: Optional[int],
    ) -> None:
        super().__init__()
        self._socket = client_socket
        self._buffer = buffered
        self._deadline_ns = deadline_ns
        self._chunk_remaining = 0
        self._need_crlf = False
        self._done = False

    def _recv(self, size: int = RECV_SIZE) -> bytes:
        data = recv_with_deadline(self._socket, self._deadline_ns, size)
        if not data:
            raise BodyReadError(
                "client closed connection before body completed", self.bytes_read
            )
        return data

    def _read_line(self) -> bytes:
        while CRLF not in self._buffer:
            if len(self._buffer) > MAX_CHUNK_LINE_BYTES:
                raise BodyReadError("chunk line too long", self.bytes_read)
            self._buffer += self._recv()
        line, self._buffer = self._buffer.split(CRLF, 1)
        return line

    def _consume_crlf(self) -> None:
        while len(self._buffer) < len(CRLF):
            self._buffer += self._recv()
        if self._buffer[: len(CRLF)] != CRLF:
            raise BodyReadError("malformed chunk terminator", self.bytes_read)
        self._buffer = self._buffer[len(CRLF) :]
        self._need_crlf = False

    def _next_chunk_size(self) -> int:
        size_text = self._read_line().split(b";", 1)[0].strip()
        if not size_text or any(c not in b"0123456789abcdefABCDEF" for c in size_text):
            raise BodyReadError("invalid chunk size", self.bytes_read)
        return int(size_text, 16)

    def read(self, size: int) -> bytes:
        if self._done:
            return b""
        self._start()
        if self._need_crlf:
            self._consume_crlf()
        if self._chunk_remaining == 0:
            chunk_size = self._next_chunk_size()
            if chunk_size == 0:
                while self._read_line():
                    pass
                self._done = True
                self._leftover = self._buffer
                self._buffer = b""
                return b""
            self._chunk_remaining = chunk_size
        if not self._buffer:
            self._buffer = self._recv(max(size, RECV_SIZE))
        take = min(size, self._chunk_remaining, len(self._buffer))
        data = self._buffer[:take]
        self._buffer = self._buffer[take:]
        self._chunk_remaining -= take
        if self._chunk_remaining == 0:
            self._need_crlf = True
        self.bytes_read += take
        return data

    @property
    def finished(self) -> bool:
        return self._done


# Repeated lines of these headers are merged into one comma-separated value;
# any other repeated header keeps its first value.
LIST_HEADERS = frozenset({"x-forwarded-for", "connection", "transfer-encoding"})


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary.

    Raises MalformedRequest for lines without a name and for repeated
    Content-Length headers that disagree.
    """
    parsed: dict[str, str] = {}
    for line in lines:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep or not name or name != name.strip():
            raise MalformedRequest(f"Invalid header line: {line!r}")
        key = name.lower()
        value = value.strip()
        if key not in parsed:
            parsed[key] = value
        elif key == "content-length":
            if parsed[key] != value:
                raise MalformedRequest("Conflicting Content-Length headers")
        elif key in LIST_HEADERS:
            parsed[key] = f"{parsed[key]}, {value}" if parsed[key] else value
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Parse the method, decoded path, raw query and protocol version."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise MalformedRequest("Invalid request line") from exc
    if not method or not target or not version.startswith("HTTP/1."):
        raise MalformedRequest("Invalid request line")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path) or "/"
    return method, path, parsed_target.query, version


def _build_body_reader(
    client_socket: socket.socket,
    headers: dict[str, str],
    remainder: bytes,
    deadline_ns: Optional[int],
) -> BodyReader:
    transfer_encoding = headers.get("transfer-encoding", "").lower()
    if transfer_encoding:
        if transfer_encoding.split(",")[-1].strip() != "chunked":
            raise MalformedRequest("Unsupported Transfer-Encoding")
        return ChunkedBodyReader(client_socket, remainder, deadline_ns)

    header_value = headers.get("content-length")
    if header_value is None:
        return BodyReader(remainder)
    if not (header_value.isascii() and header_value.isdigit()):
        raise MalformedRequest("Invalid Content-Length")
    content_length = int(header_value)
    if content_length == 0:
        return BodyReader(remainder)
    return FixedLengthBodyReader(client_socket, remainder, content_length, deadline_ns)


def _expects_continue(version: str, headers: dict[str, str]) -> bool:
    return version == "HTTP/1.1" and headers.get("expect", "").lower() == "100-continue"


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    deadline_ns: Optional[int],
    max_header_bytes: int,
    remote_addr: str = "",
) -> Optional[HttpRequest]:
    """Read a request head and wrap the unread body in a streaming reader.

    Returns None when the client closes the connection before a complete
    head arrives.
    """
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > max_header_bytes:
            raise HeaderTooLarge
        chunk = recv_with_deadline(client_socket, deadline_ns)
        if not chunk:
            return None
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    if len(header_block) > max_header_bytes:
        raise HeaderTooLarge
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, query, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    accept_incoming_correlation_id(headers.get("x-request-id"))

    body = _build_body_reader(client_socket, headers, remainder, deadline_ns)
    if _expects_continue(version, headers) and not body.finished:
        # Only sent once a handler starts reading the body.
        body.before_first_read = partial(
            send_with_deadline, client_socket, CONTINUE_RESPONSE, deadline_ns
        )
    IO_LOGGER.debug("Parsed request", extra={"method": method, "route": path})
    return HttpRequest(
        method,
        path,
        headers,
        body,
        query=query,
        remote_addr=remote_addr,
        version=version,
    )


def _serialize_head(response: HttpResponse) -> bytes:
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    if response.content_length is not None:
        headers["Content-Length"] = str(response.content_length)
    else:
        headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    return "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER


def send_response(
    client_socket: socket.socket,
    response: HttpResponse,
    deadline_ns: Optional[int] = None,
) -> None:
    """Serialize and send the HTTP response over the socket.

    Streamed bodies are written chunk by chunk with ``sendall`` so every
    chunk reaches the transport before the next one is produced. A failure
    while streaming is reported through ``response.on_write_error`` and
    raised as StreamInterrupted.
    """
    header_block = _serialize_head(response)
    if response.body_iter is None:
        send_with_deadline(client_socket, header_block + response.body, deadline_ns)
    else:
        send_with_deadline(client_socket, header_block, deadline_ns)
        try:
            for chunk in response.body_iter:
                send_with_deadline(client_socket, chunk, deadline_ns)
        except OSError as error:
            if response.on_write_error is not None:
                response.on_write_error(error)
            raise StreamInterrupted(str(error)) from error
    IO_LOGGER.debug("Sent response", extra={"status_code": response.status_code})
