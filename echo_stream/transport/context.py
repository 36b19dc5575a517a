"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from echo_stream.bootstrap.config import ServerConfig
from echo_stream.lifecycle.state import ServerLifecycle


@dataclass(frozen=True)
class WorkerContext:
    """Read-only dependencies shared across handler threads."""

    config: ServerConfig
    lifecycle: Optional[ServerLifecycle] = None
