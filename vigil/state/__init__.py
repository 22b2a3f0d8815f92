"""Per-monitor state — unique values, sliding windows, cooldowns."""

from pathlib import Path

from vigil.state.cooldown import CooldownTracker
from vigil.state.persistence import AppendLog, JsonStateFile
from vigil.state.saver import StateSaver
from vigil.state.unique_cache import UniqueCache
from vigil.state.window_counter import WindowCounter


def open_state(directory: Path | None) -> tuple[UniqueCache, WindowCounter, CooldownTracker]:
    """Build the three state stores, persisted under *directory* if given."""
    if directory is None:
        return UniqueCache(), WindowCounter(), CooldownTracker()
    return (
        UniqueCache(directory / "unique"),
        WindowCounter(directory / "windows.json"),
        CooldownTracker(directory / "cooldowns.json"),
    )


__all__ = [
    "AppendLog",
    "CooldownTracker",
    "JsonStateFile",
    "StateSaver",
    "UniqueCache",
    "WindowCounter",
    "open_state",
]
