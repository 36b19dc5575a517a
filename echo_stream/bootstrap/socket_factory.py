"""Listening socket creation."""

import logging
import socket
import sys

from echo_stream.bootstrap.config import ServerConfig
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("echo_stream.socket"), {})

ACCEPT_POLL_SECONDS = 0.5
LISTEN_BACKLOG = 128


def create_server_socket(config: ServerConfig) -> socket.socket:
    """Bind the listener, exiting the process when the address is unusable."""
    try:
        server_socket = socket.create_server(
            (config.host, config.port), backlog=LISTEN_BACKLOG
        )
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listener",
            extra={
                "event": "bind_failed",
                "host": config.host,
                "port": config.port,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
        sys.exit(1)
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
