"""Event sources feeding occurrences into the engine."""

from vigil.sources.base import BaseSource, OccurrenceCallback
from vigil.sources.timer import IntervalSource, interval_sources

__all__ = [
    "BaseSource",
    "IntervalSource",
    "OccurrenceCallback",
    "interval_sources",
]
