"""Process-wide admission control for heavy conversions."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .logging import get_logger


class ConcurrencyGate:
    """Counting gate with FIFO hand-off.

    ``release`` passes the slot straight to the oldest waiter instead of
    decrementing, so a late arrival can never overtake a queued caller and
    ``active`` never exceeds ``max_concurrency``.
    """

    def __init__(self, max_concurrency: int):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._max = max_concurrency
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self.logger = get_logger(component="concurrency_gate")

    @property
    def max_concurrency(self) -> int:
        return self._max

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self._active < self._max and not self._waiters:
            self._active += 1
            self.logger.debug("gate_acquired", active=self._active, max=self._max, queued=len(self._waiters))
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self.logger.debug("gate_waiting", active=self._active, max=self._max, queued=len(self._waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation landed.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise
        self.logger.debug("gate_acquired", active=self._active, max=self._max, queued=len(self._waiters))

    def release(self) -> None:
        if self._active <= 0:
            raise RuntimeError("release() called without a matching acquire()")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                self.logger.debug("gate_handed_off", active=self._active, max=self._max, queued=len(self._waiters))
                return
        self._active -= 1
        self.logger.debug("gate_released", active=self._active, max=self._max, queued=0)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()


__all__ = ["ConcurrencyGate"]
