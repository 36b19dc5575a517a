"""Integration tests for graceful shutdown behavior."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import signal
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Generator

import pytest

from tests.utils.http import (
    read_http_response,
    read_log_events,
    read_response_head,
    reserve_port,
    send_signal_to_process,
    wait_for_health_status,
)
from tests.utils.server import (
    HOST,
    PROJECT_ROOT,
    SERVER_MODULE,
    ServerProcessInfo,
    describe_server,
    launch_server,
)

pytestmark = pytest.mark.integration


def _launch(tmp_path: Path, grace_seconds: str) -> ServerProcessInfo:
    port = reserve_port(HOST)
    log_file = tmp_path / "server.log"
    process = launch_server(port, log_file, ["--shutdown-grace-seconds", grace_seconds])
    return describe_server(process, port, log_file)


def _stop(process: subprocess.Popen[bytes]) -> None:
    if process.poll() is None:
        process.kill()
    process.communicate()


@pytest.fixture
def server_info(tmp_path: Path) -> Generator[ServerProcessInfo, None, None]:
    """A server with the default five second grace period."""
    info = _launch(tmp_path, "5")
    yield info
    _stop(info["process"])


@pytest.fixture
def impatient_server_info(tmp_path: Path) -> Generator[ServerProcessInfo, None, None]:
    """A server that force-closes connections one second into shutdown."""
    info = _launch(tmp_path, "1")
    yield info
    _stop(info["process"])


def _events(info: ServerProcessInfo) -> list:
    return [entry.get("event") for entry in read_log_events(info["log_file"])]


@pytest.mark.parametrize("sig", [signal.SIGTERM, signal.SIGINT])
def test_signal_shuts_down_cleanly(server_info: ServerProcessInfo, sig: int) -> None:
    """An idle server exits 0 promptly on SIGTERM or SIGINT."""
    process = server_info["process"]
    assert wait_for_health_status(server_info["host"], server_info["port"], 200)
    start = time.monotonic()
    send_signal_to_process(process.pid, sig)
    process.wait(timeout=7.0)
    assert time.monotonic() - start < 6.0
    assert process.returncode == 0

    events = _events(server_info)
    assert "shutdown_started" in events
    assert "server_stopped" in events
    assert "shutdown_forced" not in events


def test_listener_closes_after_signal(server_info: ServerProcessInfo) -> None:
    """No new connections are served once shutdown begins."""
    send_signal_to_process(server_info["process"].pid, signal.SIGTERM)
    server_info["process"].wait(timeout=7.0)
    with pytest.raises(OSError):
        socket.create_connection((server_info["host"], server_info["port"]), timeout=1)


def test_in_flight_download_completes_during_drain(
    server_info: ServerProcessInfo,
) -> None:
    """A transfer already in progress is allowed to finish."""
    size = 20 * 1024 * 1024
    process = server_info["process"]
    with socket.create_connection(
        (server_info["host"], server_info["port"]), timeout=5
    ) as sock:
        sock.sendall(f"GET /download?size={size} HTTP/1.1\r\n\r\n".encode())
        _, _, body = read_response_head(sock)
        send_signal_to_process(process.pid, signal.SIGTERM)
        time.sleep(0.2)
        assert process.poll() is None
        received = len(body)
        while received < size:
            chunk = sock.recv(1024 * 1024)
            assert chunk, "connection closed early"
            received += len(chunk)
        assert received == size
    process.wait(timeout=7.0)
    assert process.returncode == 0


def test_idle_keep_alive_connection_closes_on_drain(
    server_info: ServerProcessInfo,
) -> None:
    """Idle kept-alive connections do not hold up shutdown."""
    process = server_info["process"]
    with socket.create_connection(
        (server_info["host"], server_info["port"]), timeout=5
    ) as sock:
        sock.sendall(b"GET /health HTTP/1.1\r\n\r\n")
        assert read_http_response(sock).status_code == 200
        send_signal_to_process(process.pid, signal.SIGTERM)
        assert sock.recv(1) == b""
    process.wait(timeout=3.0)
    assert process.returncode == 0


def test_stalled_download_is_force_closed(
    impatient_server_info: ServerProcessInfo,
) -> None:
    """A client that stops reading is cut off after the grace period."""
    process = impatient_server_info["process"]
    with socket.create_connection(
        (impatient_server_info["host"], impatient_server_info["port"]), timeout=5
    ) as sock:
        sock.sendall(b"GET /download?size=104857600 HTTP/1.1\r\n\r\n")
        read_response_head(sock)
        start = time.monotonic()
        send_signal_to_process(process.pid, signal.SIGTERM)
        process.wait(timeout=5.0)
        assert time.monotonic() - start < 4.0
    assert process.returncode == 1

    events = _events(impatient_server_info)
    assert "shutdown_forced" in events
    assert "server_exit_forced" in events


def test_bind_failure_exits_with_status_one(tmp_path: Path) -> None:
    """An occupied port aborts startup with a critical log line."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind((HOST, 0))
        blocker.listen()
        port = blocker.getsockname()[1]
        log_file = tmp_path / "server.log"
        process = subprocess.Popen(
            [
                sys.executable,
                "-m",
                SERVER_MODULE,
                "--host",
                HOST,
                "--port",
                str(port),
                "--log-destination",
                str(log_file),
            ],
            cwd=PROJECT_ROOT,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        process.communicate(timeout=10)
    assert process.returncode == 1
    entries = read_log_events(log_file)
    bind_failed = next(e for e in entries if e.get("event") == "bind_failed")
    assert bind_failed["level"] == "CRITICAL"
    assert bind_failed["port"] == port
