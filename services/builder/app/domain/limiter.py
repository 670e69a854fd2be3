"""Bounded-parallelism gate for coroutines."""
from __future__ import annotations

import asyncio
import math
from collections import deque
from typing import Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DoneObserver = Callable[["ConcurrencyLimiter"], None]


class ConcurrencyLimiter:
    """Admit at most ``max_concurrency`` tasks at once; the rest wait in FIFO order.

    A finishing task hands its slot straight to the oldest waiter, so a newcomer
    can never jump ahead of queued requests.
    """

    def __init__(self, max_concurrency: float) -> None:
        self.max_concurrency: float = max_concurrency if max_concurrency > 0 else math.inf
        self.running = 0
        self.executed = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._observers: list[DoneObserver] = []

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def subscribe(self, observer: DoneObserver) -> Callable[[], None]:
        """Call ``observer`` after every task completion; returns an unsubscribe callable."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        self.executed += 1
        try:
            return await task()
        finally:
            self._release()
            self._notify()

    async def _acquire(self) -> None:
        if self.running < self.max_concurrency:
            self.running += 1
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was already handed over; pass it on.
                self._release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.running -= 1

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception:
                logger.exception("limiter.observer_failed", observer=repr(observer))


__all__ = ["ConcurrencyLimiter", "DoneObserver"]
