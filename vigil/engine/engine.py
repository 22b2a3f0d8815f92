"""MonitorEngine — routes occurrences through conditions to actions."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import structlog

from vigil.engine.actions import ActionDispatcher
from vigil.engine.conditions import ConditionPipeline, PipelineResult
from vigil.engine.types import Monitor, Occurrence
from vigil.engine.variables import GlobalVariables, VariableStore

# Dedicated structured logger for pipeline outcomes.
decision_logger = structlog.get_logger("decision_log")

logger = structlog.stdlib.get_logger()

_QueueItem = tuple[Monitor, Occurrence]


class MonitorEngine:
    """Consumes occurrences from event sources and acts on those that pass.

    Each monitor gets its own FIFO queue and worker task: occurrences for one
    monitor are handled one at a time in arrival order, while different
    monitors run concurrently. The pipeline and the cooldown commit run under
    a per-monitor lock; actions run after it is released.

    Usage::

        engine = MonitorEngine(monitors, pipeline, dispatcher)
        await engine.start()

        # Wire up sources:
        source.on_occurrence(engine.submit_occurrence)

        # ... later ...
        await engine.stop()
    """

    def __init__(
        self,
        monitors: Iterable[Monitor],
        pipeline: ConditionPipeline,
        dispatcher: ActionDispatcher,
        globals_: GlobalVariables | None = None,
    ) -> None:
        self._monitors: dict[str, Monitor] = {m.name: m for m in monitors}
        self._pipeline = pipeline
        self._dispatcher = dispatcher
        self._globals = globals_ or GlobalVariables()

        self._locks: dict[str, asyncio.Lock] = {}
        self._queues: dict[str, asyncio.Queue[_QueueItem]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._running = False
        self._generation = 1

        # Stats
        self._received = 0
        self._passed = 0
        self._failed = 0
        self._action_failures = 0

    # ── Properties ────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, int]:
        """Current engine statistics."""
        return {
            "received": self._received,
            "passed": self._passed,
            "failed": self._failed,
            "action_failures": self._action_failures,
            "generation": self._generation,
        }

    @property
    def running(self) -> bool:
        return self._running

    @property
    def monitors(self) -> dict[str, Monitor]:
        return dict(self._monitors)

    @property
    def globals(self) -> GlobalVariables:
        return self._globals

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info("monitor_engine_started", monitors=len(self._monitors))

    async def stop(self) -> None:
        """Stop accepting occurrences, finish the queued ones, stop workers."""
        self._running = False
        await self.drain()
        for name in list(self._workers):
            await self._stop_worker(name)
        logger.info("monitor_engine_stopped", stats=self.stats)

    async def drain(self) -> None:
        """Wait until every queued occurrence has been processed."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def replace_monitors(self, monitors: Iterable[Monitor]) -> None:
        """Swap in a new generation of monitors.

        Occurrences already queued are processed with the monitor definition
        they were submitted against. Workers of removed monitors drain and
        stop.
        """
        new = {m.name: m for m in monitors}
        removed = set(self._monitors) - set(new)
        self._monitors = new
        self._generation += 1
        logger.info(
            "monitors_replaced",
            generation=self._generation,
            monitors=len(new),
            removed=sorted(removed),
        )
        for name in removed:
            queue = self._queues.get(name)
            if queue is not None:
                await queue.join()
            await self._stop_worker(name)
            self._locks.pop(name, None)

    # ── Ingestion ─────────────────────────────────────────────────

    def submit_occurrence(self, occurrence: Occurrence) -> bool:
        """Queue an occurrence for its monitor. Designed for ``source.on_occurrence()``.

        Returns False if the engine is stopped or the monitor is unknown.
        """
        if not self._running:
            logger.debug("occurrence_ignored_engine_stopped", monitor=occurrence.monitor)
            return False
        monitor = self._monitors.get(occurrence.monitor)
        if monitor is None:
            logger.warning("occurrence_for_unknown_monitor", monitor=occurrence.monitor)
            return False
        self._queue_for(monitor.name).put_nowait((monitor, occurrence))
        return True

    async def on_occurrence(self, occurrence: Occurrence) -> PipelineResult | None:
        """Evaluate one occurrence now and run actions if it passes.

        Returns the pipeline result, or None for an unknown monitor.
        """
        monitor = self._monitors.get(occurrence.monitor)
        if monitor is None:
            logger.warning("occurrence_for_unknown_monitor", monitor=occurrence.monitor)
            return None
        return await self._process(monitor, occurrence)

    # ── Internal ──────────────────────────────────────────────────

    async def _process(self, monitor: Monitor, occurrence: Occurrence) -> PipelineResult:
        self._received += 1
        local = dict(occurrence.variables)
        if occurrence.line is not None:
            local.setdefault("line", occurrence.line)
        variables = VariableStore.for_occurrence(self._globals, monitor.variables, local)

        async with self._lock_for(monitor.name):
            result = self._pipeline.evaluate(monitor, occurrence, variables)
            if result.passed:
                self._dispatcher.commit(monitor, occurrence.timestamp)

        decision_logger.info(
            "decision",
            monitor=monitor.name,
            event=occurrence.event.value,
            passed=result.passed,
            failed_condition=result.failed_condition,
            detail=result.detail,
        )

        if not result.passed:
            self._failed += 1
            return result

        self._passed += 1
        failures = await self._dispatcher.run(
            monitor, result.variables, timestamp=occurrence.timestamp
        )
        self._action_failures += failures
        return result

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def _queue_for(self, name: str) -> asyncio.Queue[_QueueItem]:
        queue = self._queues.get(name)
        if queue is None:
            queue = self._queues[name] = asyncio.Queue()
            self._workers[name] = asyncio.create_task(self._worker(name, queue))
        return queue

    async def _worker(self, name: str, queue: asyncio.Queue[_QueueItem]) -> None:
        while True:
            monitor, occurrence = await queue.get()
            try:
                await self._process(monitor, occurrence)
            except Exception:
                logger.exception("occurrence_processing_error", monitor=name)
            finally:
                queue.task_done()

    async def _stop_worker(self, name: str) -> None:
        task = self._workers.pop(name, None)
        self._queues.pop(name, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
