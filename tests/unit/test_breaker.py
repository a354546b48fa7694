"""
Tests for the circuit breaker.

Key behaviours:
  - Opens after failure_threshold consecutive failures, not before
  - A success in between resets the count
  - Open -> half_open once reset_timeout has passed (computed lazily)
  - half_open: success closes, failure re-opens immediately
"""
import pytest

from screener.upstream.breaker import CircuitBreaker, CircuitState
from screener.upstream.errors import CircuitOpenError


def make_breaker(clock, threshold=3, reset=60.0):
    return CircuitBreaker(failure_threshold=threshold, reset_timeout=reset, clock=clock)


class TestClosed:
    def test_starts_closed(self, clock):
        breaker = make_breaker(clock)
        assert breaker.state is CircuitState.CLOSED
        breaker.before_call()

    def test_opens_at_threshold(self, clock):
        breaker = make_breaker(clock, threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN

    def test_success_resets_consecutive_count(self, clock):
        breaker = make_breaker(clock, threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.consecutive_failures == 2


class TestOpen:
    def test_before_call_raises_with_time_remaining(self, clock):
        breaker = make_breaker(clock, threshold=1, reset=60.0)
        breaker.record_failure()
        clock.advance(20)
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.before_call()
        assert exc_info.value.retry_in == pytest.approx(40.0)

    def test_half_opens_after_reset_timeout(self, clock):
        breaker = make_breaker(clock, threshold=1, reset=60.0)
        breaker.record_failure()
        clock.advance(59.9)
        assert breaker.state is CircuitState.OPEN
        clock.advance(0.1)
        assert breaker.state is CircuitState.HALF_OPEN
        breaker.before_call()


class TestHalfOpen:
    def _half_open(self, clock):
        breaker = make_breaker(clock, threshold=2, reset=10.0)
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(10)
        assert breaker.state is CircuitState.HALF_OPEN
        return breaker

    def test_success_closes(self, clock):
        breaker = self._half_open(clock)
        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    def test_single_failure_reopens(self, clock):
        breaker = self._half_open(clock)
        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.before_call()
