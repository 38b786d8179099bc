"""
Single-flight guards.

A guard admits at most one holder at a time. try_acquire() is a
compare-and-set from IDLE to BUSY under a lock, so two callers can never both
observe IDLE and both proceed. Callers that lose either give up immediately
(connect, read) or poll for a bounded time before failing closed (send).
"""

import threading
import time
from enum import Enum


class GuardState(Enum):
    IDLE = "idle"
    BUSY = "busy"


class SingleFlightGuard:
    """Explicit IDLE/BUSY state with compare-and-set transitions."""

    def __init__(self, name: str):
        self.name = name
        self._state = GuardState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> GuardState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is GuardState.BUSY

    def try_acquire(self) -> bool:
        """Move IDLE -> BUSY. Returns False without waiting if already BUSY."""
        if self._state is GuardState.BUSY:
            return False
        with self._lock:
            if self._state is GuardState.BUSY:
                return False
            self._state = GuardState.BUSY
            return True

    def acquire(self, timeout: float, poll_interval: float = 0.1) -> bool:
        """
        Poll for the guard until it is acquired or the timeout elapses.

        Args:
            timeout: Maximum total time to wait in seconds
            poll_interval: Sleep between attempts in seconds

        Returns:
            True if acquired, False if the guard stayed busy for the whole timeout
        """
        deadline = time.monotonic() + timeout
        while not self.try_acquire():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(poll_interval, remaining))
        return True

    def release(self) -> None:
        """Move back to IDLE."""
        with self._lock:
            self._state = GuardState.IDLE

    def __repr__(self) -> str:
        return f"SingleFlightGuard({self.name!r}, {self._state.value})"
