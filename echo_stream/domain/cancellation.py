"""Cooperative cancellation for streamed responses."""

import threading
from typing import Callable, Mapping, Optional


class CancellationToken:
    """A cancellation signal that is polled, never waited on.

    Each check maps a reason to a non-blocking predicate. The first check
    that reports True cancels the token with its reason.
    """

    def __init__(self, checks: Optional[Mapping[str, Callable[[], bool]]] = None):
        self._event = threading.Event()
        self._checks = dict(checks or {})
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        for reason, check in self._checks.items():
            if check():
                self.cancel(reason)
                return True
        return False
