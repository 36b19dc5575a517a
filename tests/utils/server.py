"""Helpers for running the server as a subprocess in integration tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TypedDict

from tests.utils.http import wait_for_port

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
SERVER_MODULE = "echo_stream.main"
HOST = "127.0.0.1"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    process: subprocess.Popen[bytes]
    log_file: Path


def launch_server(
    port: int,
    log_file: Path,
    extra_args: list[str] | None = None,
) -> subprocess.Popen[bytes]:
    """Start the server as a subprocess and wait until it accepts connections."""
    args = [
        sys.executable,
        "-m",
        SERVER_MODULE,
        "--host",
        HOST,
        "--port",
        str(port),
        "--log-destination",
        str(log_file),
    ]
    if extra_args:
        args.extend(extra_args)

    process = subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    try:
        wait_for_port(HOST, port)
    except Exception:
        # If startup failed, print stdout/stderr to help debug
        process.terminate()
        stdout, stderr = process.communicate(timeout=5)
        print(f"\nServer stdout:\n{stdout!r}")
        print(f"\nServer stderr:\n{stderr!r}")
        raise
    return process


def describe_server(
    process: subprocess.Popen[bytes], port: int, log_file: Path
) -> ServerProcessInfo:
    """Bundle a launched process with the details tests need."""
    return {
        "base_url": f"http://{HOST}:{port}",
        "host": HOST,
        "port": port,
        "process": process,
        "log_file": log_file,
    }


def stop_server(process: subprocess.Popen[bytes]) -> None:
    """Terminate the process if still running and reap it."""
    if process.poll() is None:
        process.terminate()
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
    process.communicate()
