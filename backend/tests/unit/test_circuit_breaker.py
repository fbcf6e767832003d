"""Tests for the per-channel circuit breakers."""

import pytest

from ventushub.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpen,
    CircuitBreakerSet,
    CircuitState,
)
from ventushub.core.errors import DeliveryError


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCircuitBreakerStates:
    def test_initial_state_closed(self):
        cb = CircuitBreaker(name="email", failure_threshold=3, recovery_timeout=10)
        assert cb.state == CircuitState.CLOSED
        assert cb.can_execute() is True

    def test_opens_after_threshold_failures(self):
        cb = CircuitBreaker(name="email", failure_threshold=3, recovery_timeout=10)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        cb.record_failure()  # 3rd failure → OPEN
        assert cb.state == CircuitState.OPEN
        assert cb.can_execute() is False

    def test_guard_raises_when_open(self):
        cb = CircuitBreaker(name="sms", failure_threshold=1, recovery_timeout=100)
        cb.record_failure()
        with pytest.raises(CircuitBreakerOpen):
            cb.guard()

    def test_transitions_to_half_open_after_timeout(self):
        ticker = Ticker()
        cb = CircuitBreaker(name="push", failure_threshold=1, recovery_timeout=30, clock=ticker)
        cb.record_failure()
        assert cb.can_execute() is False
        ticker.now += 31
        assert cb.can_execute() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_allows_single_trial_call(self):
        ticker = Ticker()
        cb = CircuitBreaker(name="push", failure_threshold=1, recovery_timeout=30, clock=ticker)
        cb.record_failure()
        ticker.now += 31
        assert cb.can_execute() is True
        assert cb.can_execute() is False

    def test_half_open_success_closes(self):
        ticker = Ticker()
        cb = CircuitBreaker(name="email", failure_threshold=1, recovery_timeout=30, clock=ticker)
        cb.record_failure()
        ticker.now += 31
        cb.can_execute()  # transitions to HALF_OPEN
        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    def test_half_open_failure_reopens(self):
        ticker = Ticker()
        cb = CircuitBreaker(name="email", failure_threshold=1, recovery_timeout=30, clock=ticker)
        cb.record_failure()
        ticker.now += 31
        cb.can_execute()
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(name="email", failure_threshold=3, recovery_timeout=10)
        cb.record_failure()
        cb.record_failure()
        assert cb.failure_count == 2
        cb.record_success()
        assert cb.failure_count == 0

    def test_get_status(self):
        cb = CircuitBreaker(name="email", failure_threshold=3)
        status = cb.get_status()
        assert status["name"] == "email"
        assert status["state"] == "closed"
        assert status["failure_count"] == 0


class TestCircuitBreakerSet:
    def test_one_breaker_per_channel(self):
        breakers = CircuitBreakerSet(failure_threshold=2, recovery_timeout=5)
        assert breakers.get("email") is breakers.get("email")
        assert breakers.get("email") is not breakers.get("sms")
        assert {b.name for b in breakers.all()} == {"email", "sms"}

    def test_settings_propagate(self):
        breakers = CircuitBreakerSet(failure_threshold=2, recovery_timeout=5)
        cb = breakers.get("push")
        assert cb.failure_threshold == 2
        assert cb.recovery_timeout == 5

    def test_channels_fail_independently(self):
        breakers = CircuitBreakerSet(failure_threshold=1)
        breakers.get("email").record_failure()
        assert breakers.get("email").is_open
        assert breakers.get("sms").can_execute() is True


class TestCircuitBreakerOpen:
    def test_exception_message(self):
        exc = CircuitBreakerOpen("email")
        assert "email" in str(exc)
        assert exc.breaker_name == "email"

    def test_is_transient_delivery_error(self):
        exc = CircuitBreakerOpen("email")
        assert isinstance(exc, DeliveryError)
        assert exc.channel == "email"
