"""Token bucket rate limiter gating outbound API calls."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "rate_limiter"})


class TokenBucket:
    """
    Token bucket rate limiter.

    Tokens accumulate at ``refill_rate`` per second up to ``capacity``. Refill
    is computed lazily from the monotonic clock whenever the bucket is
    touched, so no background timer is needed.
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        *,
        max_wait_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the bucket.

        Args:
            capacity: Burst allowance (maximum stored tokens)
            refill_rate: Tokens added per second
            max_wait_seconds: Upper bound on how long a single consume() waits
            clock: Monotonic time source (seconds)
            sleep: Awaitable sleep used while waiting for tokens
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be greater than zero")

        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self.max_wait_seconds = max_wait_seconds
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()

    def _refill(self) -> float:
        now = self._clock()
        elapsed = max(now - self._last_refill, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now
        return self._tokens

    def available_tokens(self) -> float:
        """Return the current token count after a lazy refill."""

        return self._refill()

    async def consume(self) -> None:
        """Wait until a token is available, then debit it. Never raises."""

        wait_step = 1.0 / self.refill_rate
        waited = 0.0
        while self._refill() < 1.0:
            if waited >= self.max_wait_seconds:
                logger.warning(
                    "Rate limiter wait bound of %.1fs reached; proceeding without a token",
                    self.max_wait_seconds,
                    extra={"status": "throttled"},
                )
                break
            await self._sleep(wait_step)
            waited += wait_step
        self._tokens -= 1.0
