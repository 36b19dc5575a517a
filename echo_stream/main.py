"""Streaming upload/download throughput test server."""

import logging
import os
import signal
import sys
from typing import Optional

from echo_stream.bootstrap.config import (
    DOWNLOAD_PATH,
    HEALTH_PATH,
    UPLOAD_PATH,
    build_config,
    parse_cli_args,
)
from echo_stream.bootstrap.logging_setup import configure_logging
from echo_stream.domain.correlation_id import CorrelationLoggerAdapter
from echo_stream.lifecycle.state import ServerLifecycle
from echo_stream.transport.accept_loop import run_server

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("echo_stream.server"), {})


def install_signal_handlers(lifecycle: ServerLifecycle) -> None:
    """Route SIGINT and SIGTERM into a graceful drain."""

    def shutdown_handler(signum: int, _frame) -> None:
        SERVER_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal_received", "signal": signal.Signals(signum).name},
        )
        lifecycle.begin_draining()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the server until a termination signal and return the exit status."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(
        args.log_level, args.log_destination, use_json=args.log_format == "json"
    )

    try:
        config = build_config(args)
    except ValueError as error:
        SERVER_LOGGER.critical(
            "Invalid configuration",
            extra={"event": "config_invalid", "error": str(error)},
        )
        return 2

    lifecycle = ServerLifecycle()
    install_signal_handlers(lifecycle)

    SERVER_LOGGER.info(
        "Starting server",
        extra={
            "event": "server_starting",
            "host": config.host,
            "port": config.port,
            "pid": os.getpid(),
            "endpoints": [UPLOAD_PATH, DOWNLOAD_PATH, HEALTH_PATH],
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "log_format": args.log_format,
            "read_timeout": config.read_timeout,
            "write_timeout": config.write_timeout,
            "idle_timeout": config.idle_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )

    if run_server(config, lifecycle):
        SERVER_LOGGER.info("Server exited gracefully", extra={"event": "server_exit"})
        return 0
    SERVER_LOGGER.error(
        "Server exited after forced shutdown",
        extra={"event": "server_exit_forced"},
    )
    return 1


if __name__ == "__main__":
    sys.exit(main())
