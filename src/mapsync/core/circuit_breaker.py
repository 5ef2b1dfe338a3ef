"""Circuit breaker isolating a failing delivery destination."""

from __future__ import annotations

import time
from collections.abc import Callable


class CircuitBreaker:
    """Closed → open → half-open → closed.

    * **Closed**: deliveries flow normally.
    * **Open**: after *failure_threshold* consecutive failures, deliveries
      to this destination are skipped and updates stay queued (where the
      queue's capacity bound applies).
    * **Half-open**: after *recovery_timeout* seconds one probe delivery
      is allowed.

    State changes contain no ``await``, so they are atomic within one
    event-loop iteration.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._failure_count = 0
        self._opened_at: float | None = None
        self._half_open_probe_sent = False

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        return self._clock() - self._opened_at < self._recovery_timeout

    @property
    def is_half_open(self) -> bool:
        if self._opened_at is None:
            return False
        return self._clock() - self._opened_at >= self._recovery_timeout

    @property
    def is_closed(self) -> bool:
        return self._opened_at is None

    def allow_request(self) -> bool:
        """Return True if a delivery should be attempted."""
        if self.is_closed:
            return True
        if self.is_half_open and not self._half_open_probe_sent:
            self._half_open_probe_sent = True
            return True
        return False

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None
        self._half_open_probe_sent = False

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            self._opened_at = self._clock()
            self._half_open_probe_sent = False
