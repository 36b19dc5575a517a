"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Generator

import pytest

from tests.utils.http import reserve_port
from tests.utils.server import (
    HOST,
    PROJECT_ROOT,
    ServerProcessInfo,
    describe_server,
    launch_server,
    stop_server,
)

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory


def _serve(
    log_dir: Path, extra_args: list[str] | None = None
) -> Generator[ServerProcessInfo, None, None]:
    port = reserve_port(HOST)
    log_file = log_dir / "server.log"
    process = launch_server(port, log_file, extra_args)
    yield describe_server(process, port, log_file)
    stop_server(process)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with default limits for integration tests."""

    yield from _serve(tmp_path_factory.mktemp("server"))


@pytest.fixture(name="limited_server_process")
def _limited_server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with small size limits and a short grace period."""

    limit_args = [
        "--max-upload-bytes",
        str(1024 * 1024),
        "--max-download-bytes",
        str(4 * 1024 * 1024),
        "--default-download-bytes",
        str(64 * 1024),
        "--shutdown-grace-seconds",
        "1",
    ]
    yield from _serve(tmp_path_factory.mktemp("server-limited"), limit_args)


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
