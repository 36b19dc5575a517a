"""Shared fixtures for unit tests."""

import logging

import pytest

from echo_stream.bootstrap.config import ServerConfig


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("echo_stream")
    old_propagate = logger.propagate
    old_level = logger.level
    old_handlers = list(logger.handlers)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    yield
    for handler in logger.handlers:
        if handler not in old_handlers:
            handler.close()
    logger.handlers[:] = old_handlers
    logger.propagate = old_propagate
    logger.setLevel(old_level)


@pytest.fixture(name="small_config")
def small_config_fixture() -> ServerConfig:
    """Limits small enough to exercise boundaries quickly."""
    return ServerConfig(
        max_upload_bytes=100_000,
        max_download_bytes=1_000_000,
        default_download_bytes=50_000,
        buffer_size=4096,
        read_timeout=2,
        write_timeout=2,
        idle_timeout=2,
    )
