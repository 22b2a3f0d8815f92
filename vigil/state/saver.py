"""Background flushing of snapshot-style state off the event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class Flushable(Protocol):
    def flush(self) -> bool: ...


class StateSaver:
    """Periodically flushes dirty state stores from a worker thread.

    Usage::

        saver = StateSaver([windows, cooldowns], interval=5.0)
        await saver.start()
        # ...
        await saver.stop()  # final flush
    """

    def __init__(self, stores: Iterable[Flushable], interval: float = 5.0) -> None:
        self._stores = list(stores)
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._flushes = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def flushes(self) -> int:
        return self._flushes

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush_now()

    async def flush_now(self) -> int:
        """Flush every store once. Returns how many wrote a snapshot."""
        written = 0
        for store in self._stores:
            try:
                if await asyncio.to_thread(store.flush):
                    written += 1
            except Exception:
                logger.exception("state_flush_error", store=type(store).__name__)
        self._flushes += written
        return written

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.flush_now()
            except asyncio.CancelledError:
                break
