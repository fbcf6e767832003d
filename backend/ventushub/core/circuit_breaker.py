"""Circuit breakers for external delivery providers.

States: CLOSED → OPEN → HALF_OPEN → CLOSED (or back to OPEN)

One breaker per channel. A breaker set is owned by the channel registry of a
worker process, never shared through module globals.
"""

import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable

from ventushub.core.errors import DeliveryError
from ventushub.core.metrics import CIRCUIT_BREAKER_STATE

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE = {CircuitState.CLOSED: 0, CircuitState.OPEN: 1, CircuitState.HALF_OPEN: 2}


@dataclass
class CircuitBreaker:
    """Fails delivery fast while a provider keeps erroring.

    Args:
        name: Identifier for this breaker (the channel, e.g. "email")
        failure_threshold: Consecutive transient failures before opening
        recovery_timeout: Seconds to wait before letting a trial call through
        half_open_max_calls: Trial calls allowed while half-open
        clock: Monotonic time source
    """
    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 1
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    failure_count: int = field(default=0, init=False)
    success_count: int = field(default=0, init=False)
    last_failure_time: float = field(default=0.0, init=False)
    half_open_calls: int = field(default=0, init=False)

    def can_execute(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.clock() - self.last_failure_time >= self.recovery_timeout:
                self._transition(CircuitState.HALF_OPEN)
                self.half_open_calls += 1
                return True
            return False

        if self.half_open_calls < self.half_open_max_calls:
            self.half_open_calls += 1
            return True
        return False

    def guard(self) -> None:
        """Raise CircuitBreakerOpen instead of returning False."""
        if not self.can_execute():
            raise CircuitBreakerOpen(self.name)

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.half_open_max_calls:
                self._transition(CircuitState.CLOSED)
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self.clock()

        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self.state == CircuitState.CLOSED:
            if self.failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old = self.state
        self.state = new_state
        logger.warning(f"Circuit breaker '{self.name}': {old.value} → {new_state.value}")
        CIRCUIT_BREAKER_STATE.labels(name=self.name).set(_STATE_GAUGE[new_state])

        if new_state == CircuitState.CLOSED:
            self.failure_count = 0
        self.success_count = 0
        self.half_open_calls = 0

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
        }


class CircuitBreakerOpen(DeliveryError):
    """Delivery blocked by an open breaker. Transient: the job is retried later."""

    def __init__(self, breaker_name: str):
        self.breaker_name = breaker_name
        super().__init__(f"Circuit breaker '{breaker_name}' is OPEN", channel=breaker_name)


class CircuitBreakerSet:
    """Lazily created breakers keyed by channel."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                clock=self.clock,
            )
            self._breakers[name] = breaker
        return breaker

    def all(self) -> list[CircuitBreaker]:
        return list(self._breakers.values())
