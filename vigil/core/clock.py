"""Clock and timer scheduling shared by the stateful components.

Every delayed callback in the engine (debounce flushes, cron ticks,
rate-limit deferrals, interval sources) goes through a ``Scheduler`` so tests
can drive time by hand.
"""

from __future__ import annotations

import abc
import asyncio
import heapq
import time
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.stdlib.get_logger()

Clock = Callable[[], float]
TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(abc.ABC):
    """A pending scheduled callback."""

    @abc.abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call repeatedly."""

    @property
    @abc.abstractmethod
    def when(self) -> float:
        """Wall-clock time the callback is due."""


class Scheduler(abc.ABC):
    """Wall-clock time source plus one-shot async timers."""

    @abc.abstractmethod
    def now(self) -> float:
        """Current wall-clock time in epoch seconds."""

    @abc.abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Run *callback* after *delay* seconds."""

    def call_at(self, when: float, callback: TimerCallback) -> TimerHandle:
        return self.call_later(max(0.0, when - self.now()), callback)


class _LoopTimerHandle(TimerHandle):
    def __init__(self, scheduler: LoopScheduler, when: float) -> None:
        self._scheduler = scheduler
        self._when = when
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def when(self) -> float:
        return self._when

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop.

    Callbacks run as tasks; ``close()`` cancels anything still pending and
    waits for running callbacks to finish.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._pending: set[_LoopTimerHandle] = set()
        self._running: set[asyncio.Task[None]] = set()

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = _LoopTimerHandle(self, self.now() + delay)

        def _fire() -> None:
            self._pending.discard(handle)
            if handle.cancelled:
                return
            task = loop.create_task(self._run(callback))
            handle._task = task
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        handle._handle = loop.call_later(max(0.0, delay), _fire)
        self._pending.add(handle)
        return handle

    async def _run(self, callback: TimerCallback) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduled_callback_error")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        for handle in list(self._pending):
            handle.cancel()
        self._pending.clear()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)


class _ManualTimerHandle(TimerHandle):
    def __init__(self, when: float) -> None:
        self._when = when
        self.cancelled = False

    @property
    def when(self) -> float:
        return self._when

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Deterministic scheduler whose clock only moves when told to.

    Used for simulations and tests::

        scheduler = ManualScheduler(start=0.0)
        scheduler.call_later(10, flush)
        await scheduler.advance(10)  # runs flush with now() == 10
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = 0
        self._timers: list[tuple[float, int, _ManualTimerHandle, TimerCallback]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        handle = _ManualTimerHandle(self._now + max(0.0, delay))
        self._seq += 1
        heapq.heappush(self._timers, (handle.when, self._seq, handle, callback))
        return handle

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, handle, _ in self._timers if not handle.cancelled)

    def next_due(self) -> float | None:
        live = [when for when, _, handle, _ in self._timers if not handle.cancelled]
        return min(live) if live else None

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due."""
        await self.run_until(self._now + seconds)

    async def run_until(self, target: float) -> None:
        while self._timers and self._timers[0][0] <= target:
            when, _, handle, callback = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            try:
                await callback()
            except Exception:
                logger.exception("scheduled_callback_error")
        self._now = max(self._now, target)
