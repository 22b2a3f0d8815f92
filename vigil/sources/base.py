"""Event source base — produces occurrences for the monitors subscribed to it."""

from __future__ import annotations

import abc
import asyncio
from collections.abc import Awaitable, Callable, Iterable
from types import TracebackType

import structlog

from vigil.engine.types import EventKind, Occurrence

logger = structlog.stdlib.get_logger()

# ``MonitorEngine.submit_occurrence`` is synchronous; async sinks are awaited.
OccurrenceCallback = Callable[[Occurrence], Awaitable[None] | bool | None]


class BaseSource(abc.ABC):
    """One producer of a single event kind, shared by several monitors.

    ``poll()`` returns whatever happened since the previous call; the base
    class runs it every *interval* seconds and hands each occurrence to the
    registered sinks. After consecutive poll failures the delay doubles, up
    to *max_backoff*, and resets on the next successful poll.

    Usage::

        source = MySource(EventKind.LOG, monitors=["ssh"], interval=1.0)
        source.on_occurrence(engine.submit_occurrence)
        async with source:
            ...
    """

    def __init__(
        self,
        kind: EventKind,
        monitors: Iterable[str],
        interval: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self._kind = kind
        self._monitors: tuple[str, ...] = tuple(monitors)
        self._interval = interval
        self._max_backoff = max(max_backoff, interval)
        self._sinks: list[OccurrenceCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._consecutive_errors = 0

        # Stats
        self._emitted = 0
        self._poll_errors = 0

    # ── Properties ────────────────────────────────────────────────

    @property
    def kind(self) -> EventKind:
        return self._kind

    @property
    def monitors(self) -> tuple[str, ...]:
        return self._monitors

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return {"emitted": self._emitted, "poll_errors": self._poll_errors}

    def next_delay(self) -> float:
        """Seconds to wait before the next poll, including error backoff."""
        if self._consecutive_errors == 0:
            return self._interval
        return min(self._interval * 2 ** self._consecutive_errors, self._max_backoff)

    # ── Sinks ─────────────────────────────────────────────────────

    def on_occurrence(self, callback: OccurrenceCallback) -> None:
        self._sinks.append(callback)

    async def _emit(self, occurrence: Occurrence) -> None:
        self._emitted += 1
        for sink in self._sinks:
            try:
                result = sink(occurrence)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "occurrence_sink_error",
                    kind=self._kind,
                    monitor=occurrence.monitor,
                )

    # ── Subclass hooks ────────────────────────────────────────────

    async def connect(self) -> None:
        """Open whatever the source reads from. No-op by default."""

    async def close(self) -> None:
        """Release whatever the source reads from. No-op by default."""

    @abc.abstractmethod
    async def poll(self) -> list[Occurrence]:
        """Return the occurrences produced since the last poll."""

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self.connect()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "source_started",
            kind=self._kind,
            monitors=list(self._monitors),
            interval=self._interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.close()
        logger.info("source_stopped", kind=self._kind, stats=self.stats)

    async def run_once(self) -> int:
        """Poll once and emit the results. Returns the number emitted."""
        occurrences = await self.poll()
        for occurrence in occurrences:
            await self._emit(occurrence)
        return len(occurrences)

    async def _run(self) -> None:
        while self._running:
            try:
                await self.run_once()
                self._consecutive_errors = 0
            except asyncio.CancelledError:
                break
            except Exception:
                self._poll_errors += 1
                self._consecutive_errors += 1
                logger.exception(
                    "source_poll_error",
                    kind=self._kind,
                    consecutive_errors=self._consecutive_errors,
                    retry_in=self.next_delay(),
                )

            try:
                await asyncio.sleep(self.next_delay())
            except asyncio.CancelledError:
                break

    async def __aenter__(self) -> BaseSource:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
