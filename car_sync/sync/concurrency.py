"""Bounded FIFO concurrency limiter for page fetch tasks."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """Run at most ``limit`` tasks at once, admitting queued tasks in submission order."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._running = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def running(self) -> int:
        """Number of tasks currently executing."""

        return self._running

    @property
    def queued(self) -> int:
        """Number of tasks waiting for a slot."""

        return sum(1 for waiter in self._waiters if not waiter.done())

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        """Execute ``task`` once a slot is free and return its result.

        The task's own exception propagates unchanged; the slot is released
        either way.
        """

        await self._acquire()
        try:
            return await task()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._running < self.limit and not self._waiters:
            self._running += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            # A slot handed to a cancelled waiter must be passed on.
            if waiter.done() and not waiter.cancelled():
                self._release()
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand the slot over directly; the running count is unchanged.
                waiter.set_result(None)
                return
        self._running -= 1
