"""Per-server circuit breaker with CLOSED, OPEN and HALF_OPEN states."""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable

__all__ = ["State", "Breaker"]


class State(str, Enum):
    """Circuit breaker state."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __str__(self) -> str:
        return self.value


class Breaker:
    """Trips after ``threshold`` failures and allows a probe after ``recovery_timeout`` seconds."""

    def __init__(
        self,
        threshold: int,
        recovery_timeout: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._state = State.CLOSED
        self._failures = 0
        self._threshold = threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._last_failure = 0.0

    def _elapsed(self) -> float:
        return self._clock() - self._last_failure

    def is_open(self) -> bool:
        """Report whether requests are blocked, without changing state."""
        with self._lock:
            if self._state is not State.OPEN:
                return False
            return self._elapsed() <= self._recovery_timeout

    def can_send(self) -> bool:
        """Report whether a request may go out; moves OPEN to HALF_OPEN once the timeout passed."""
        with self._lock:
            if self._state is State.OPEN:
                if self._elapsed() > self._recovery_timeout:
                    self._state = State.HALF_OPEN
                    return True
                return False
            return True

    def record_success(self) -> bool:
        """Close the circuit; return True if it was not already closed."""
        with self._lock:
            was_open = self._state is not State.CLOSED
            self._failures = 0
            self._state = State.CLOSED
            return was_open

    def record_failure(self) -> None:
        """Count a failure, tripping at the threshold or straight away when half open."""
        with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            if self._failures >= self._threshold or self._state is State.HALF_OPEN:
                self._state = State.OPEN

    def state(self) -> State:
        """Return the current state."""
        with self._lock:
            return self._state