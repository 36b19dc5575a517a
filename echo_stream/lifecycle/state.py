"""Server lifecycle: state transitions, draining and worker tracking."""

import enum
import logging
import socket
import threading
import time

from echo_stream.domain.correlation_id import CorrelationLoggerAdapter

JOIN_SLICE_SECONDS = 0.1

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("echo_stream.lifecycle"), {}
)


class ServerState(enum.Enum):
    """Lifecycle states, in the only order they are entered."""

    STARTING = "starting"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ServerLifecycle:
    """Server state plus the connections still owned by worker threads.

    Draining and force-closing are one-way latches: once set they stay set
    for the life of the process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._draining = threading.Event()
        self._forcing = threading.Event()
        self._connections: dict[threading.Thread, socket.socket] = {}
        self._state = ServerState.STARTING

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    def _advance(self, target: ServerState) -> bool:
        with self._lock:
            ordering = list(ServerState)
            if ordering.index(target) <= ordering.index(self._state):
                return False
            self._state = target
        LIFECYCLE_LOGGER.info(
            "Server state changed",
            extra={"event": "state_changed", "state": target.value},
        )
        return True

    def mark_serving(self) -> None:
        self._advance(ServerState.SERVING)

    def mark_stopped(self) -> None:
        self._advance(ServerState.STOPPED)

    def is_draining(self) -> bool:
        """True once shutdown has begun and no new work should start."""
        return self._draining.is_set()

    def is_force_closing(self) -> bool:
        """True once the grace period has expired for remaining connections."""
        return self._forcing.is_set()

    def register_worker(
        self, thread: threading.Thread, client_socket: socket.socket
    ) -> None:
        with self._lock:
            self._connections[thread] = client_socket

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._connections.pop(thread, None)

    def has_worker(self, thread: threading.Thread) -> bool:
        with self._lock:
            return thread in self._connections

    def active_worker_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def begin_draining(self) -> None:
        """Ask for a graceful drain.

        Only an event is set here and no lock is taken, so this is safe to
        call from a signal handler that interrupted a thread holding the
        lifecycle lock. The accept loop performs the state change through
        :meth:`enter_shutdown` once it notices the flag.
        """
        self._draining.set()

    def enter_shutdown(self) -> bool:
        """Move to SHUTTING_DOWN once draining was requested; True the first time."""
        if not self._draining.is_set():
            return False
        if not self._advance(ServerState.SHUTTING_DOWN):
            return False
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown", extra={"event": "shutdown_started"}
        )
        return True

    def _live_workers(self) -> list[threading.Thread]:
        with self._lock:
            for finished in [t for t in self._connections if not t.is_alive()]:
                del self._connections[finished]
            return list(self._connections)

    def wait_for_workers(self, timeout: float) -> bool:
        """Join worker threads until none remain; False if ``timeout`` ran out."""
        deadline = time.monotonic() + timeout
        workers = self._live_workers()
        while workers:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Grace period expired with connections still open",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_connections": len(workers),
                    },
                )
                return False
            workers[0].join(timeout=min(JOIN_SLICE_SECONDS, remaining))
            workers = self._live_workers()
        return True

    def force_close(self) -> int:
        """Cut off every remaining connection and return how many there were."""
        self._forcing.set()
        with self._lock:
            sockets = list(self._connections.values())
        for client_socket in sockets:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        LIFECYCLE_LOGGER.error(
            "Forced shutdown of remaining connections",
            extra={"event": "shutdown_forced", "remaining_connections": len(sockets)},
        )
        return len(sockets)
