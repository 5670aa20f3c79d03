"""Circuit breaker around GitHub API calls.

Three states:
- CLOSED: normal operation, calls pass through
- OPEN: GitHub is failing, calls are rejected immediately with
  ServiceUnavailableError (503) until the recovery timeout elapses
- HALF_OPEN: one trial call is let through and concurrent callers get
  503 until it finishes; success closes the circuit, failure re-opens it

Only upstream failures count. Validation errors, 404s for unknown check
run names and other caller mistakes raised inside the guarded block pass
through without touching the failure count.

Usage:
    breaker = CircuitBreaker("github", failure_threshold=5, recovery_timeout=60)
    async with breaker:
        await update_check_run(...)

State changes happen between awaits on a single event loop, so no lock
is taken.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from checkrun_webhook.core.errors import ServiceUnavailableError, UpstreamError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: Optional[float] = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN → HALF_OPEN once the timeout elapsed."""
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker %s half-open", self.name)
        return self._state

    async def __aenter__(self) -> "CircuitBreaker":
        state = self.state
        if state is CircuitState.OPEN:
            raise ServiceUnavailableError(f"circuit breaker {self.name} is open")
        if state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise ServiceUnavailableError(
                    f"circuit breaker {self.name} is half-open with a trial in flight"
                )
            self._trial_in_flight = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self._trial_in_flight = False
        if exc_type is None:
            self.record_success()
        elif issubclass(exc_type, UpstreamError):
            self.record_failure()
        return False

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit breaker %s closed", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failure_count += 1
        if (
            self._state is CircuitState.HALF_OPEN
            or self._failure_count >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            logger.warning(
                "Circuit breaker %s opened after %d failures",
                self.name,
                self._failure_count,
            )

    def reset(self) -> None:
        self.record_success()


_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 60.0,
) -> CircuitBreaker:
    """Return the process-wide breaker for *name*, creating it on first use.

    Thresholds are applied on every call so a settings change takes effect
    without a restart; the accumulated state is kept.
    """
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(name)
        _breakers[name] = breaker
    breaker.failure_threshold = failure_threshold
    breaker.recovery_timeout = recovery_timeout
    return breaker
