"""Circuit breaker guarding the page fetch-and-process unit."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TypeVar

from ..exceptions import CircuitBreakerOpenError
from ..monitoring.metrics import set_circuit_state
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "circuit_breaker"})

T = TypeVar("T")


class BreakerState(str, Enum):
    """Lifecycle states of the breaker."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


_STATE_GAUGE_VALUES = {
    BreakerState.CLOSED: 0,
    BreakerState.HALF_OPEN: 1,
    BreakerState.OPEN: 2,
}


class CircuitBreaker:
    """Consecutive-failure circuit breaker with a single half-open trial call."""

    def __init__(
        self,
        *,
        name: str = "page-fetch",
        failure_threshold: int = 10,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False
        set_circuit_state(self.name, _STATE_GAUGE_VALUES[self._state])

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def _set_state(self, state: BreakerState) -> None:
        self._state = state
        set_circuit_state(self.name, _STATE_GAUGE_VALUES[state])

    def retry_after(self) -> float:
        """Seconds until an open breaker admits its trial call; 0 when not open."""

        if self._state is not BreakerState.OPEN or self._opened_at is None:
            return 0.0
        return max(self.cooldown_seconds - (self._clock() - self._opened_at), 0.0)

    def _reopen_at(self) -> datetime | None:
        if self._opened_at is None:
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=self.retry_after())

    def _before_call(self) -> None:
        """Raise when the call must be rejected without running."""

        if self._state is BreakerState.OPEN:
            assert self._opened_at is not None
            if self._clock() - self._opened_at < self.cooldown_seconds:
                raise CircuitBreakerOpenError(self.name, reopen_at=self._reopen_at())
            self._set_state(BreakerState.HALF_OPEN)
            self._trial_in_flight = False
            logger.info("Circuit breaker half-open; allowing a trial call")

        if self._state is BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitBreakerOpenError(self.name)
            self._trial_in_flight = True

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` through the breaker, recording its outcome."""

        self._before_call()
        try:
            result = await func()
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            self._trial_in_flight = False
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        """Reset the failure counter and close the breaker."""

        if self._state is not BreakerState.CLOSED:
            logger.info("Circuit breaker closed after successful trial call")
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False
        self._set_state(BreakerState.CLOSED)

    def record_failure(self) -> None:
        """Count a failure, opening the breaker on threshold or failed trial."""

        self._failures += 1
        trial_failed = self._state is BreakerState.HALF_OPEN
        self._trial_in_flight = False
        if trial_failed or self._failures >= self.failure_threshold:
            self._opened_at = self._clock()
            self._set_state(BreakerState.OPEN)
            logger.error(
                "Circuit breaker opened after %s consecutive failures",
                self._failures,
                extra={"status": "error"},
            )

    def reset(self) -> None:
        """Return to the initial closed state (primarily used in testing)."""

        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False
        self._set_state(BreakerState.CLOSED)
