"""WindowCounter — sliding-window event counts for thresholds and rate limits."""

from __future__ import annotations

import threading
from collections import deque
from pathlib import Path

import structlog

from vigil.core.exceptions import PersistenceError
from vigil.state.persistence import JsonStateFile

logger = structlog.stdlib.get_logger()

_EVICTION_STEP = 0.001


class WindowCounter:
    """Per-key ordered timestamps, evicted lazily against a trailing window.

    ``count_in_window(key, window, now)`` counts the recorded timestamps in
    ``[now - window, now]``. Entries older than the queried window are
    dropped on each query, and a key whose entries are all gone is dropped
    with them, so a key should always be queried with the same window.

    With *state_file* set, changes only mark the counter dirty; ``flush()``
    writes the snapshot (``StateSaver`` calls it off the event loop) so
    counts survive a restart. Losing that file is harmless.
    """

    def __init__(self, state_file: Path | None = None) -> None:
        self._state = JsonStateFile(state_file) if state_file is not None else None
        self._events: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._dirty = False
        self._load()

    @property
    def dirty(self) -> bool:
        return self._dirty

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._events)

    def record(self, key: str, timestamp: float) -> None:
        """Record one event for *key* at *timestamp*."""
        with self._lock:
            events = self._events.setdefault(key, deque())
            # Keep the deque sorted; events normally arrive in order.
            if events and timestamp < events[-1]:
                items = sorted([*events, timestamp])
                events.clear()
                events.extend(items)
            else:
                events.append(timestamp)
            self._dirty = True

    def count_in_window(self, key: str, window: float, now: float) -> int:
        """Number of events for *key* with ``now - window <= ts <= now``."""
        with self._lock:
            events = self._evict(key, now - window)
            return sum(1 for ts in events if ts <= now)

    def time_until_below(self, key: str, limit: int, window: float, now: float) -> float:
        """Seconds until fewer than *limit* events remain in the window.

        Returns 0.0 when there is capacity already.
        """
        with self._lock:
            in_window = [ts for ts in self._evict(key, now - window) if ts <= now]
            if len(in_window) < limit:
                return 0.0
            # The window is closed at both ends, so capacity returns just after
            # this event leaves it.
            expiring = in_window[len(in_window) - limit]
            return max(0.0, expiring + window - now) + _EVICTION_STEP

    def reset(self, key: str | None = None) -> None:
        """Drop all events for *key*, or for every key."""
        with self._lock:
            if key is None:
                self._events.clear()
            else:
                self._events.pop(key, None)
            self._dirty = True

    def _evict(self, key: str, cutoff: float) -> deque[float]:
        events = self._events.get(key)
        if events is None:
            return deque()
        if events and events[0] < cutoff:
            while events and events[0] < cutoff:
                events.popleft()
            self._dirty = True
        if not events:
            del self._events[key]
        return events

    # ── Persistence ───────────────────────────────────────────────

    def flush(self) -> bool:
        """Write the snapshot if anything changed. Returns True if written.

        Blocking; call it from a worker thread when on the event loop.
        """
        if self._state is None:
            return False
        with self._lock:
            if not self._dirty:
                return False
            snapshot = {key: list(events) for key, events in self._events.items() if events}
            self._dirty = False
        try:
            self._state.save({"windows": snapshot})
        except PersistenceError as exc:
            with self._lock:
                self._dirty = True
            logger.warning("window_counter_persist_failed", error=str(exc))
            return False
        return True

    def _load(self) -> None:
        if self._state is None:
            return
        try:
            data = self._state.load()
        except PersistenceError as exc:
            logger.warning("window_counter_load_failed", error=str(exc))
            return
        windows = data.get("windows", {})
        if not isinstance(windows, dict):
            return
        for key, stamps in windows.items():
            if isinstance(stamps, list):
                valid = sorted(float(ts) for ts in stamps if isinstance(ts, (int, float)))
                if valid:
                    self._events[str(key)] = deque(valid)
