"""Cancellable repeating timers.

Stream loops own their timers through a Scheduler so that starting and
stopping a loop is a single synchronous step, and so tests can drive time
by hand with ManualScheduler instead of sleeping.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        """Stop the timer. Idempotent."""

    @property
    @abstractmethod
    def cancelled(self) -> bool: ...


class Scheduler(ABC):
    @abstractmethod
    def every(self, period: float, callback: Callback, name: str = "timer") -> TimerHandle:
        """Run `callback` every `period` seconds, first after one period.

        A callback that is still running delays the next one; runs never overlap.
        """


class _TaskTimer(TimerHandle):
    def __init__(self, period: float, callback: Callback, name: str) -> None:
        self._period = period
        self._callback = callback
        self._cancelled = False
        self._task = asyncio.create_task(self._run(), name=name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._period)
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Timer callback %s failed", self._task.get_name())

    def cancel(self) -> None:
        self._cancelled = True
        if not self._task.done():
            self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """Timers backed by asyncio tasks. Must be used from a running event loop."""

    def every(self, period: float, callback: Callback, name: str = "timer") -> TimerHandle:
        if period <= 0:
            raise ValueError(f"period must be > 0, got {period}")
        return _TaskTimer(period, callback, name)


class _ManualTimer(TimerHandle):
    def __init__(self, period: float, callback: Callback, due: float) -> None:
        self.period = period
        self.callback = callback
        self.due = due
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Deterministic scheduler driven by ``await advance(seconds)``.

    Also serves as the clock for code under test (``scheduler.now``), so the
    cache and throttle expire in step with the timers.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: list[_ManualTimer] = []

    def now(self) -> float:
        return self._now

    def every(self, period: float, callback: Callback, name: str = "timer") -> TimerHandle:
        if period <= 0:
            raise ValueError(f"period must be > 0, got {period}")
        timer = _ManualTimer(period, callback, due=self._now + period)
        self._timers.append(timer)
        return timer

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing due callbacks in due-time order."""
        target = self._now + seconds
        while True:
            self._timers = [t for t in self._timers if not t.cancelled]
            due = [t for t in self._timers if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._now = timer.due
            timer.due += timer.period
            await timer.callback()
        self._now = target
