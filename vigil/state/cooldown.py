"""CooldownTracker — last time each monitor's actions fired."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path

import structlog

from vigil.core.exceptions import PersistenceError
from vigil.state.persistence import JsonStateFile

logger = structlog.stdlib.get_logger()


class CooldownTracker:
    """Per-monitor last-fired timestamps.

    ``check`` passes when the monitor never fired or at least *duration*
    seconds have elapsed since it last did. With *state_file* set,
    ``record_fired`` marks the tracker dirty and ``flush()`` writes it.
    """

    def __init__(self, state_file: Path | None = None) -> None:
        self._state = JsonStateFile(state_file) if state_file is not None else None
        self._last_fired: dict[str, float] = {}
        self._lock = threading.Lock()
        self._dirty = False
        self._load()

    @property
    def dirty(self) -> bool:
        return self._dirty

    def check(self, monitor: str, duration: float, now: float) -> bool:
        with self._lock:
            last = self._last_fired.get(monitor)
        return last is None or now - last >= duration

    def record_fired(self, monitor: str, now: float) -> None:
        with self._lock:
            self._last_fired[monitor] = now
            self._dirty = True

    def last_fired(self, monitor: str) -> float | None:
        with self._lock:
            return self._last_fired.get(monitor)

    def prune(self, monitors: Iterable[str]) -> None:
        """Forget monitors that are no longer configured."""
        keep = set(monitors)
        with self._lock:
            stale = [name for name in self._last_fired if name not in keep]
            for name in stale:
                del self._last_fired[name]
            if stale:
                self._dirty = True
                logger.debug("cooldown_pruned", monitors=stale)

    def flush(self) -> bool:
        """Write the timestamps if anything changed. Returns True if written."""
        if self._state is None:
            return False
        with self._lock:
            if not self._dirty:
                return False
            snapshot = dict(self._last_fired)
            self._dirty = False
        try:
            self._state.save({"last_fired": snapshot})
        except PersistenceError as exc:
            with self._lock:
                self._dirty = True
            logger.warning("cooldown_persist_failed", error=str(exc))
            return False
        return True

    def _load(self) -> None:
        if self._state is None:
            return
        try:
            data = self._state.load()
        except PersistenceError as exc:
            logger.warning("cooldown_load_failed", error=str(exc))
            return
        last_fired = data.get("last_fired", {})
        if isinstance(last_fired, dict):
            self._last_fired = {
                str(name): float(ts)
                for name, ts in last_fired.items()
                if isinstance(ts, (int, float))
            }
