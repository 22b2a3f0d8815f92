"""Interval timer source for monitors declaring ``every``."""

from __future__ import annotations

import time
from collections.abc import Iterable

from vigil.core.clock import Clock
from vigil.engine.types import EventKind, Every, Monitor, Occurrence
from vigil.sources.base import BaseSource


class IntervalSource(BaseSource):
    """Ticks every *interval* seconds, once for each subscribed monitor.

    The first tick fires as soon as the source starts. Each occurrence
    carries ``interval`` and a running ``tick`` number as variables.
    """

    def __init__(
        self, monitors: Iterable[str], interval: float, clock: Clock = time.time
    ) -> None:
        super().__init__(EventKind.EVERY, monitors, interval=interval)
        self._clock = clock
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    async def poll(self) -> list[Occurrence]:
        self._ticks += 1
        now = self._clock()
        return [
            Occurrence(
                monitor=name,
                event=EventKind.EVERY,
                timestamp=now,
                variables={"interval": self._interval, "tick": self._ticks},
            )
            for name in self._monitors
        ]


def interval_sources(monitors: Iterable[Monitor]) -> list[IntervalSource]:
    """One shared ``IntervalSource`` per distinct ``every`` interval."""
    by_interval: dict[float, list[str]] = {}
    for monitor in monitors:
        for event in monitor.events:
            if isinstance(event, Every):
                by_interval.setdefault(event.interval, []).append(monitor.name)
    return [IntervalSource(names, interval) for interval, names in by_interval.items()]
