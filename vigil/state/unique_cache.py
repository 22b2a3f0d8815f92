"""UniqueCache — persistent set of values already seen per (monitor, variable)."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import structlog

from vigil.core.clock import Clock
from vigil.core.exceptions import PersistenceError
from vigil.state.persistence import AppendLog, safe_filename

logger = structlog.stdlib.get_logger()


class UniqueCache:
    """Records the first time each value of a variable was seen by a monitor.

    Each monitor has its own append-only cache file under *directory*
    (``<monitor>.jsonl``, see ``safe_filename``), loaded lazily on first use. With no directory the
    cache is memory-only.

    ``seen_and_record`` is atomic per monitor: under concurrent calls with
    the same value exactly one caller gets ``True``.
    """

    def __init__(self, directory: Path | None = None, clock: Clock = time.time) -> None:
        self._directory = directory
        self._clock = clock
        # monitor -> variable -> value -> first-seen timestamp
        self._values: dict[str, dict[str, dict[str, float]]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── Queries ───────────────────────────────────────────────────

    def seen_and_record(self, monitor: str, varname: str, value: object) -> bool:
        """Return True iff *value* was not previously recorded, recording it.

        A persistence failure keeps the value in memory and logs a warning;
        the in-memory answer stays authoritative for this process.
        """
        key = _normalize(value)
        with self._lock_for(monitor):
            values = self._load(monitor).setdefault(varname, {})
            if key in values:
                return False
            now = self._clock()
            values[key] = now
            self._append(monitor, {"var": varname, "value": key, "ts": now})
            return True

    def contains(self, monitor: str, varname: str, value: object) -> bool:
        with self._lock_for(monitor):
            return _normalize(value) in self._load(monitor).get(varname, {})

    def first_seen(self, monitor: str, varname: str, value: object) -> float | None:
        with self._lock_for(monitor):
            return self._load(monitor).get(varname, {}).get(_normalize(value))

    def values(self, monitor: str, varname: str) -> dict[str, float]:
        """Copy of the recorded values for one variable."""
        with self._lock_for(monitor):
            return dict(self._load(monitor).get(varname, {}))

    # ── Mutation ──────────────────────────────────────────────────

    def clear(self, monitor: str, varname: str | None = None) -> None:
        """Forget recorded values for a monitor (or one of its variables)."""
        with self._lock_for(monitor):
            monitor_values = self._load(monitor)
            if varname is None:
                monitor_values.clear()
            else:
                monitor_values.pop(varname, None)

            log = self._log_for(monitor)
            if log is None:
                return
            records = [
                {"var": var, "value": value, "ts": ts}
                for var, entries in monitor_values.items()
                for value, ts in entries.items()
            ]
            try:
                log.rewrite(records)
            except PersistenceError as exc:
                logger.warning("unique_cache_persist_failed", monitor=monitor, error=str(exc))

    # ── Internals ─────────────────────────────────────────────────

    def _lock_for(self, monitor: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(monitor)
            if lock is None:
                lock = self._locks[monitor] = threading.Lock()
            return lock

    def _log_for(self, monitor: str) -> AppendLog | None:
        if self._directory is None:
            return None
        return AppendLog(self._directory / f"{safe_filename(monitor)}.jsonl")

    def _load(self, monitor: str) -> dict[str, dict[str, float]]:
        """Return the monitor's value map, reading its cache file once."""
        loaded = self._values.get(monitor)
        if loaded is not None:
            return loaded

        loaded = {}
        log = self._log_for(monitor)
        if log is not None:
            try:
                records = log.read()
            except PersistenceError as exc:
                logger.warning("unique_cache_load_failed", monitor=monitor, error=str(exc))
                records = []
            for record in records:
                var = record.get("var")
                value = record.get("value")
                if not isinstance(var, str) or not isinstance(value, str):
                    continue
                ts = record.get("ts")
                loaded.setdefault(var, {}).setdefault(
                    value, float(ts) if isinstance(ts, (int, float)) else 0.0
                )
            if records:
                logger.debug("unique_cache_loaded", monitor=monitor, records=len(records))
        self._values[monitor] = loaded
        return loaded

    def _append(self, monitor: str, record: dict[str, object]) -> None:
        log = self._log_for(monitor)
        if log is None:
            return
        try:
            log.append(record)
        except PersistenceError as exc:
            logger.warning("unique_cache_persist_failed", monitor=monitor, error=str(exc))


def _normalize(value: object) -> str:
    return value if isinstance(value, str) else str(value)
