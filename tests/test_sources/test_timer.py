"""Tests for BaseSource lifecycle and the interval timer source."""

from __future__ import annotations

import asyncio

from vigil.engine.types import EventKind, Every, LogFile, Monitor, Occurrence
from vigil.sources.base import BaseSource
from vigil.sources.timer import IntervalSource, interval_sources


class StubSource(BaseSource):
    """Concrete BaseSource for testing."""

    def __init__(
        self,
        poll_results: list[list[Occurrence]] | None = None,
        poll_error: Exception | None = None,
        interval: float = 0.01,
    ) -> None:
        super().__init__(EventKind.LOG, monitors=["m"], interval=interval, max_backoff=0.04)
        self._poll_results = poll_results or []
        self.poll_error = poll_error
        self.connect_called = False
        self.close_called = False

    async def connect(self) -> None:
        self.connect_called = True

    async def close(self) -> None:
        self.close_called = True

    async def poll(self) -> list[Occurrence]:
        if self.poll_error is not None:
            raise self.poll_error
        if self._poll_results:
            return self._poll_results.pop(0)
        return []


def _occ(monitor: str = "m") -> Occurrence:
    return Occurrence(monitor=monitor, event=EventKind.LOG, line="x")


class TestBaseSource:
    async def test_lifecycle(self) -> None:
        source = StubSource()
        async with source:
            assert source.connect_called
            assert source.running
        assert source.close_called
        assert not source.running

    async def test_start_is_idempotent(self) -> None:
        source = StubSource()
        await source.start()
        task = source._task
        await source.start()
        assert source._task is task
        await source.stop()

    async def test_emits_to_sync_and_async_sinks(self) -> None:
        seen_sync: list[Occurrence] = []
        seen_async: list[Occurrence] = []

        async def on_async(occ: Occurrence) -> None:
            seen_async.append(occ)

        source = StubSource(poll_results=[[_occ("a"), _occ("b")]])
        source.on_occurrence(seen_sync.append)
        source.on_occurrence(on_async)
        assert await source.run_once() == 2
        assert [o.monitor for o in seen_sync] == ["a", "b"]
        assert [o.monitor for o in seen_async] == ["a", "b"]
        assert source.stats["emitted"] == 2

    async def test_sink_error_does_not_stop_others(self) -> None:
        seen: list[Occurrence] = []

        def broken(occ: Occurrence) -> None:
            raise RuntimeError("boom")

        source = StubSource(poll_results=[[_occ()]])
        source.on_occurrence(broken)
        source.on_occurrence(seen.append)
        await source.run_once()
        assert len(seen) == 1

    async def test_poll_errors_counted_in_background_loop(self) -> None:
        source = StubSource(poll_error=ConnectionError("gone"))
        async with source:
            await asyncio.sleep(0.05)
        assert source.stats["poll_errors"] >= 1


class TestBackoff:
    def test_no_errors_uses_interval(self) -> None:
        assert StubSource(interval=0.01).next_delay() == 0.01

    def test_doubles_and_caps(self) -> None:
        source = StubSource(interval=0.01)
        source._consecutive_errors = 1
        assert source.next_delay() == 0.02
        source._consecutive_errors = 5
        assert source.next_delay() == 0.04

    async def test_resets_after_success(self) -> None:
        source = StubSource(poll_error=ConnectionError("gone"))
        async with source:
            await asyncio.sleep(0.03)
            assert source.next_delay() > source.interval
            source.poll_error = None
            await asyncio.sleep(0.1)
            assert source.next_delay() == source.interval


class TestIntervalSource:
    async def test_one_occurrence_per_monitor_per_tick(self) -> None:
        source = IntervalSource(["disk", "load"], 300.0, clock=lambda: 1234.0)
        occurrences = await source.poll()
        assert [o.monitor for o in occurrences] == ["disk", "load"]
        for occ in occurrences:
            assert occ.event == EventKind.EVERY
            assert occ.timestamp == 1234.0
            assert occ.variables == {"interval": 300.0, "tick": 1}
        assert source.kind == EventKind.EVERY

    async def test_ticks_immediately_then_on_interval(self) -> None:
        seen: list[Occurrence] = []
        source = IntervalSource(["m"], 0.02)
        source.on_occurrence(seen.append)
        async with source:
            await asyncio.sleep(0.05)
        assert len(seen) >= 2
        assert [o.variables["tick"] for o in seen] == list(range(1, len(seen) + 1))

    def test_monitors_sharing_an_interval_share_a_source(self) -> None:
        monitors = [
            Monitor(name="a", events=(Every(interval=60.0),)),
            Monitor(name="b", events=(LogFile(path="/x"),)),
            Monitor(name="c", events=(Every(interval=5.0), LogFile(path="/y"))),
            Monitor(name="d", events=(Every(interval=60.0),)),
        ]
        sources = interval_sources(monitors)
        assert [(s.monitors, s.interval) for s in sources] == [
            (("a", "d"), 60.0),
            (("c",), 5.0),
        ]
