"""Per-connection worker: keep-alive request loop, cancellation wiring and cleanup."""

import logging
import select
import socket
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Optional

from echo_stream.bootstrap.config import SECURITY_HEADERS
from echo_stream.domain.cancellation import CancellationToken
from echo_stream.domain.client_ip import format_address
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter, request_scope
from echo_stream.domain.http_types import HttpRequest
from echo_stream.domain.response_builders import (
    bad_request_response,
    header_too_large_response,
)
from echo_stream.lifecycle.state import ServerLifecycle
from echo_stream.pipeline.io import receive_request, send_response
from echo_stream.pipeline.router import route_request
from echo_stream.pipeline.validation import (
    HeaderTooLarge,
    MalformedRequest,
    StreamInterrupted,
)
from echo_stream.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.transport.worker"), {}
)

IDLE_POLL_SECONDS = 0.5
LINGER_SECONDS = 0.5
LINGER_MAX_BYTES = 256 * 1024


def _deadline_ns(seconds: float) -> int:
    return time.monotonic_ns() + int(seconds * 1_000_000_000)


def peer_closed(client_socket: socket.socket) -> bool:
    """Poll, without blocking, whether the peer has gone away."""
    try:
        readable, _, _ = select.select([client_socket], [], [], 0)
        if not readable:
            return False
        return client_socket.recv(1, socket.MSG_PEEK) == b""
    except (OSError, ValueError):
        return True


def _wait_for_request(
    client_socket: socket.socket,
    lifecycle: Optional[ServerLifecycle],
    timeout: float,
) -> bool:
    """Wait for the next request's first bytes; False on timeout or drain."""
    deadline = time.monotonic() + timeout
    while True:
        if lifecycle is not None and lifecycle.is_draining():
            return False
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        readable, _, _ = select.select(
            [client_socket], [], [], min(IDLE_POLL_SECONDS, remaining)
        )
        if readable:
            return True


def _read_request_with_validation(
    client_socket: socket.socket,
    buffer: bytes,
    context: WorkerContext,
    client_addr_str: str,
) -> Optional[HttpRequest]:
    """Read a request head, answering protocol errors directly."""
    deadline_ns = _deadline_ns(context.config.read_timeout)
    try:
        request = receive_request(
            client_socket,
            buffer,
            deadline_ns,
            context.config.max_header_bytes,
            remote_addr=client_addr_str,
        )
    except HeaderTooLarge:
        WORKER_LOGGER.warning(
            "Request head exceeded limit",
            extra={
                "event": "header_too_large",
                "client": client_addr_str,
                "limit": context.config.max_header_bytes,
            },
        )
        send_response(client_socket, header_too_large_response(SECURITY_HEADERS))
        return None
    except MalformedRequest as error:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={
                "event": "malformed_request",
                "client": client_addr_str,
                "error": str(error),
            },
        )
        send_response(
            client_socket,
            bad_request_response("malformed request", None, SECURITY_HEADERS),
        )
        return None

    if request is None and WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Client disconnected during request",
            extra={"event": "client_disconnected", "client": client_addr_str},
        )
    return request


def _cancellation_for(
    client_socket: socket.socket, lifecycle: Optional[ServerLifecycle]
) -> CancellationToken:
    checks = {"client_disconnected": partial(peer_closed, client_socket)}
    if lifecycle is not None:
        checks["server_shutdown"] = lifecycle.is_force_closing
    return CancellationToken(checks)


def _process_request(
    request: HttpRequest,
    context: WorkerContext,
    client_socket: socket.socket,
) -> tuple[bool, bool]:
    """Route and answer one request.

    Returns whether the connection must close and whether the close should
    linger to drain an unread request body.
    """
    request.cancellation = _cancellation_for(client_socket, context.lifecycle)
    started = time.perf_counter()
    response = route_request(request, context.config)

    unread_body = not request.body.finished
    if unread_body:
        response.close_connection = True
    elif request.version == "HTTP/1.0" and not response.close_connection:
        response.headers["Connection"] = "keep-alive"

    send_response(
        client_socket, response, _deadline_ns(context.config.write_timeout)
    )

    WORKER_LOGGER.debug(
        "Request processing complete",
        extra={
            "event": "request_complete",
            "client": request.remote_addr,
            "method": request.method,
            "route": request.path,
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 3),
        },
    )

    if request.cancellation.is_cancelled():
        return True, False
    return response.close_connection, unread_body


@dataclass
class _Connection:
    """One accepted socket and the state carried between its requests."""

    sock: socket.socket
    client: str
    thread: threading.Thread
    pending: bytes = b""
    served: int = 0
    linger: bool = False


def _linger(client_socket: socket.socket) -> None:
    """Drain a little of an abandoned body so the client can read our reply."""
    deadline = time.monotonic() + LINGER_SECONDS
    drained = 0
    while drained < LINGER_MAX_BYTES:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return
        client_socket.settimeout(remaining)
        data = client_socket.recv(65536)
        if not data:
            return
        drained += len(data)


def _release(connection: _Connection, lifecycle: Optional[ServerLifecycle]) -> None:
    if lifecycle is not None:
        lifecycle.cleanup_worker(connection.thread)
    try:
        connection.sock.shutdown(socket.SHUT_WR)
        if connection.linger:
            _linger(connection.sock)
    except OSError:
        pass
    connection.sock.close()
    WORKER_LOGGER.debug(
        "Connection released",
        extra={
            "event": "socket_closed",
            "client": connection.client,
            "requests_served": connection.served,
        },
    )


def _next_request_ready(connection: _Connection, context: WorkerContext) -> bool:
    """Decide whether another request should be read on this connection."""
    lifecycle = context.lifecycle
    if connection.pending:
        # Pipelined bytes are already buffered; only a drain stops us here.
        return lifecycle is None or not lifecycle.is_draining()
    wait_seconds = (
        context.config.idle_timeout if connection.served else context.config.read_timeout
    )
    if _wait_for_request(connection.sock, lifecycle, wait_seconds):
        return True
    WORKER_LOGGER.debug(
        "Closing idle connection",
        extra={"event": "connection_idle", "client": connection.client},
    )
    return False


def _serve_one(connection: _Connection, context: WorkerContext) -> bool:
    """Read and answer a single request; False once the connection must end."""
    WORKER_LOGGER.debug(
        "Request processing started",
        extra={"event": "request_started", "client": connection.client},
    )
    request = _read_request_with_validation(
        connection.sock, connection.pending, context, connection.client
    )
    connection.served += 1
    if request is None:
        return False
    should_close, connection.linger = _process_request(
        request, context, connection.sock
    )
    connection.pending = request.body.leftover()
    return not should_close


def _log_failure(error: BaseException, client: str) -> None:
    if isinstance(error, StreamInterrupted):
        WORKER_LOGGER.info(
            "Response stream interrupted",
            extra={"event": "stream_interrupted", "client": client, "error": str(error)},
        )
        return
    details = {
        "client": client,
        "error_type": type(error).__name__,
        "error": str(error),
    }
    if isinstance(error, OSError):
        WORKER_LOGGER.warning(
            "Client connection failed",
            extra={"event": "connection_error", **details},
        )
    else:
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={"event": "worker_error", **details},
            exc_info=error,
        )


def handle_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Serve keep-alive requests on ``client_socket`` until it should close."""
    connection = _Connection(
        client_socket, format_address(client_address), threading.current_thread()
    )
    try:
        while _next_request_ready(connection, context):
            with request_scope():
                try:
                    keep_open = _serve_one(connection, context)
                except Exception as error:  # pylint: disable=broad-except
                    _log_failure(error, connection.client)
                    keep_open = False
            if not keep_open:
                break
    except Exception as error:  # pylint: disable=broad-except
        _log_failure(error, connection.client)
    finally:
        _release(connection, context.lifecycle)
