"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


KIB = 1024
MIB = 1024 * KIB

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_SHUTDOWN_GRACE_SECONDS = 5
DEFAULT_MAX_UPLOAD_BYTES = 32 * MIB
DEFAULT_MAX_DOWNLOAD_BYTES = 100 * MIB
DEFAULT_DOWNLOAD_BYTES = 2 * MIB
DEFAULT_BUFFER_SIZE = 32 * KIB
DEFAULT_MAX_HEADER_BYTES = 64 * KIB

PORT_ENV_VAR = "PORT"

HEADER_DELIMITER = b"\r\n\r\n"
UPLOAD_PATH = "/upload"
DOWNLOAD_PATH = "/download"
HEALTH_PATH = "/health"
UPLOAD_METHODS = {"POST", "PUT"}
DOWNLOAD_METHODS = {"GET", "HEAD"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
}


@dataclass(frozen=True)
class ServerConfig:
    """Immutable limits and timeouts shared read-only by every connection."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    read_timeout: float = DEFAULT_TIMEOUT_SECONDS
    write_timeout: float = DEFAULT_TIMEOUT_SECONDS
    idle_timeout: float = DEFAULT_TIMEOUT_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_download_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES
    default_download_bytes: int = DEFAULT_DOWNLOAD_BYTES
    buffer_size: int = DEFAULT_BUFFER_SIZE
    max_header_bytes: int = DEFAULT_MAX_HEADER_BYTES

    def __post_init__(self) -> None:
        if self.buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        if self.max_download_bytes <= 0:
            raise ValueError("max_download_bytes must be positive")
        if self.max_upload_bytes < 0:
            raise ValueError("max_upload_bytes must not be negative")
        if not 0 < self.default_download_bytes <= self.max_download_bytes:
            raise ValueError(
                "default_download_bytes must be between 1 and max_download_bytes"
            )


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        description="Streaming upload/download throughput test server"
    )
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument(
        "--port",
        type=int,
        default=_env_int(PORT_ENV_VAR, DEFAULT_PORT),
        help=f"Listen port (default: ${PORT_ENV_VAR} or {DEFAULT_PORT})",
    )
    default_log_level = _env_str("ECHO_STREAM_LOG_LEVEL", "INFO").upper()
    default_destination = _env_str("ECHO_STREAM_LOG_DESTINATION", "stdout")
    default_log_format = _env_str("ECHO_STREAM_LOG_FORMAT", "json").lower()
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=default_log_format,
        choices=["json", "text"],
        type=str.lower,
        help="json lines, or plain text for reading in a terminal",
    )
    parser.add_argument(
        "--read-timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds allowed to read one request",
    )
    parser.add_argument(
        "--write-timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds allowed to write one response",
    )
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds a kept-alive connection may wait for its next request",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for in-flight requests on shutdown",
    )
    parser.add_argument(
        "--max-upload-bytes",
        type=int,
        default=DEFAULT_MAX_UPLOAD_BYTES,
        help="Largest accepted upload body",
    )
    parser.add_argument(
        "--max-download-bytes",
        type=int,
        default=DEFAULT_MAX_DOWNLOAD_BYTES,
        help="Largest download size a client may request",
    )
    parser.add_argument(
        "--default-download-bytes",
        type=int,
        default=DEFAULT_DOWNLOAD_BYTES,
        help="Download size used when the size parameter is absent",
    )
    parser.add_argument(
        "--buffer-size",
        type=int,
        default=DEFAULT_BUFFER_SIZE,
        help="Chunk size for streamed reads and writes",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Freeze parsed CLI arguments into a ServerConfig."""
    return ServerConfig(
        host=args.host,
        port=args.port,
        read_timeout=args.read_timeout,
        write_timeout=args.write_timeout,
        idle_timeout=args.idle_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
        max_upload_bytes=args.max_upload_bytes,
        max_download_bytes=args.max_download_bytes,
        default_download_bytes=args.default_download_bytes,
        buffer_size=args.buffer_size,
    )
