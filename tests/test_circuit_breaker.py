"""Tests for CircuitBreaker."""

from __future__ import annotations

from mapsync.core.circuit_breaker import CircuitBreaker
from tests.conftest import FakeClock


class TestCircuitBreakerBasics:
    def test_starts_closed(self) -> None:
        cb = CircuitBreaker()
        assert cb.is_closed
        assert not cb.is_open
        assert not cb.is_half_open
        assert cb.allow_request()

    def test_opens_after_threshold(self) -> None:
        cb = CircuitBreaker(failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
        assert cb.is_open
        assert not cb.allow_request()

    def test_resets_on_success(self) -> None:
        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.is_closed
        assert cb.allow_request()


class TestHalfOpenProbe:
    def test_half_open_after_recovery_timeout(self, clock: FakeClock) -> None:
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock.monotonic)
        cb.record_failure()
        clock.advance(29)
        assert cb.is_open
        clock.advance(1)
        assert cb.is_half_open

    def test_half_open_allows_single_probe(self) -> None:
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=0.0)
        cb.record_failure()
        cb.record_failure()
        assert cb.allow_request() is True
        assert cb.allow_request() is False

    def test_probe_success_closes(self) -> None:
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0)
        cb.record_failure()
        assert cb.allow_request()
        cb.record_success()
        assert cb.is_closed

    def test_probe_failure_reopens(self, clock: FakeClock) -> None:
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=5, clock=clock.monotonic)
        cb.record_failure()
        clock.advance(5)
        assert cb.allow_request()
        cb.record_failure()
        assert cb.is_open
        assert not cb.allow_request()
