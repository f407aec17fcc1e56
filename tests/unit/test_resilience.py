"""
Unit tests for circuit breaker and retry helpers.
"""

import httpx
import pytest

from memorygrove.common.resilience import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    get_circuit_breaker,
    retry_geocoding_call,
)


def failing():
    raise ValueError("boom")


class TestCircuitBreaker:

    def test_passes_results_through(self):
        breaker = CircuitBreaker("t")
        assert breaker.call(lambda x: x * 2, 21) == 42

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("t", failure_threshold=2, recovery_timeout=60)

        for _ in range(2):
            with pytest.raises(ValueError):
                breaker.call(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerError):
            breaker.call(lambda: "never called")

    def test_half_open_success_closes(self):
        breaker = CircuitBreaker("t", failure_threshold=1, recovery_timeout=0)
        with pytest.raises(ValueError):
            breaker.call(failing)

        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_unexpected_exception_not_counted(self):
        breaker = CircuitBreaker("t", failure_threshold=1, expected_exception=KeyError)

        with pytest.raises(ValueError):
            breaker.call(failing)

        assert breaker.state == CircuitState.CLOSED

    def test_reset(self):
        breaker = CircuitBreaker("t", failure_threshold=1)
        with pytest.raises(ValueError):
            breaker.call(failing)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED


def test_get_circuit_breaker_is_shared():
    assert get_circuit_breaker("shared-test") is get_circuit_breaker("shared-test")


def test_retry_gives_up_and_reraises():
    calls = []

    @retry_geocoding_call
    def lookup():
        calls.append(1)
        raise httpx.ConnectError("down")

    with pytest.raises(httpx.ConnectError):
        lookup()
    assert len(calls) == 3


def test_retry_ignores_other_errors():
    calls = []

    @retry_geocoding_call
    def lookup():
        calls.append(1)
        raise ValueError("bad json")

    with pytest.raises(ValueError):
        lookup()
    assert len(calls) == 1
