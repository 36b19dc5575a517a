"""Listening socket accept loop and the shutdown sequence that follows it."""

import logging
import socket
import threading
from typing import Optional

from echo_stream.bootstrap.config import SECURITY_HEADERS, ServerConfig
from echo_stream.bootstrap.socket_factory import create_server_socket
from echo_stream.domain.client_ip import format_address
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter
from echo_stream.domain.response_builders import draining_response
from echo_stream.lifecycle.state import ServerLifecycle
from echo_stream.pipeline.io import send_response
from echo_stream.transport.context import WorkerContext
from echo_stream.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.transport.accept"), {}
)

FORCE_CLOSE_JOIN_SECONDS = 1.0


def _reject_while_draining(client_socket: socket.socket) -> None:
    try:
        send_response(client_socket, draining_response(SECURITY_HEADERS))
    except OSError:
        pass
    finally:
        client_socket.close()


def _start_worker(
    client_socket: socket.socket,
    client_address: tuple,
    worker_context: WorkerContext,
) -> None:
    """Hand a new connection to its own worker thread, tracked before it starts."""
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": format_address(client_address),
            },
        )

    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, worker_context),
        daemon=True,
    )
    if worker_context.lifecycle is not None:
        worker_context.lifecycle.register_worker(thread, client_socket)
    thread.start()


def _shutdown(config: ServerConfig, lifecycle: ServerLifecycle) -> bool:
    """Wait out the grace period, force-closing stragglers; True if none."""
    lifecycle.enter_shutdown()
    ACCEPT_LOGGER.info(
        "Waiting for active connections to complete",
        extra={
            "event": "shutdown_waiting",
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
            "remaining_connections": lifecycle.active_worker_count(),
        },
    )
    clean = lifecycle.wait_for_workers(config.shutdown_grace_seconds)
    if not clean:
        lifecycle.force_close()
        lifecycle.wait_for_workers(FORCE_CLOSE_JOIN_SECONDS)
    lifecycle.mark_stopped()
    ACCEPT_LOGGER.info(
        "Server shutdown complete",
        extra={"event": "server_stopped", "state": lifecycle.state.value},
    )
    return clean


def _accept_next(
    server_socket: socket.socket, lifecycle: ServerLifecycle
) -> Optional[tuple[socket.socket, tuple]]:
    """Wait one poll interval for a connection; None when nothing arrived."""
    try:
        return server_socket.accept()
    except socket.timeout:
        return None
    except OSError as error:
        if not lifecycle.is_draining():
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={"event": "accept_error", "error_type": type(error).__name__},
            )
        return None


def run_server(config: ServerConfig, lifecycle: ServerLifecycle) -> bool:
    """Accept connections until draining begins, then run the shutdown sequence.

    Returns True when every connection finished within the grace period.
    """
    server_socket = create_server_socket(config)
    lifecycle.mark_serving()
    ACCEPT_LOGGER.info(
        "Accepting connections",
        extra={
            "event": "server_listening",
            "host": config.host,
            "port": server_socket.getsockname()[1],
        },
    )

    worker_context = WorkerContext(config=config, lifecycle=lifecycle)
    try:
        while not lifecycle.is_draining():
            accepted = _accept_next(server_socket, lifecycle)
            if accepted is None:
                continue
            client_socket, client_address = accepted
            if lifecycle.is_draining():
                _reject_while_draining(client_socket)
                break
            _start_worker(client_socket, client_address, worker_context)
    finally:
        server_socket.close()
    return _shutdown(config, lifecycle)
