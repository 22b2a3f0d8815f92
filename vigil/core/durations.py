"""Parsing for durations ("1h30m"), rates ("10/m") and cron expressions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from croniter import croniter

from vigil.core.exceptions import ConfigurationError

_UNIT_SECONDS: dict[str, float] = {
    "ms": 0.001,
    "s": 1.0,
    "sec": 1.0,
    "m": 60.0,
    "min": 60.0,
    "h": 3600.0,
    "d": 86400.0,
    "w": 604800.0,
}

_PART_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|sec|min|s|m|h|d|w)", re.IGNORECASE)
_FULL_RE = re.compile(
    r"^\s*(?:\d+(?:\.\d+)?\s*(?:ms|sec|min|s|m|h|d|w)\s*)+$", re.IGNORECASE
)
_NUMBER_RE = re.compile(r"^\s*\d+(?:\.\d+)?\s*$")


def parse_duration(value: str | int | float) -> float:
    """Parse a human duration into seconds.

    Accepts bare numbers (seconds) and unit-suffixed parts that may be
    chained, e.g. ``"90s"``, ``"1h30m"``, ``"500ms"``.

    Raises:
        ConfigurationError: The value is not a valid non-negative duration.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigurationError(f"Duration must not be negative: {value!r}")
        return float(value)

    if _NUMBER_RE.match(value):
        return float(value)
    if not _FULL_RE.match(value):
        raise ConfigurationError(f"Invalid duration: {value!r}")

    total = 0.0
    for amount, unit in _PART_RE.findall(value):
        total += float(amount) * _UNIT_SECONDS[unit.lower()]
    return total


def is_duration(value: object) -> bool:
    """True if *value* parses as a duration."""
    if not isinstance(value, (str, int, float)):
        return False
    try:
        parse_duration(value)
    except ConfigurationError:
        return False
    return True


@dataclass(frozen=True)
class Rate:
    """``count`` events per ``period`` seconds."""

    count: int
    period: float

    def __str__(self) -> str:
        return f"{self.count}/{self.period:g}s"


def parse_rate(value: str) -> Rate:
    """Parse ``"n/period"`` where period is a duration or a bare unit.

    ``"10/m"`` is ten per minute, ``"3/10m"`` three per ten minutes.
    """
    if not isinstance(value, str) or "/" not in value:
        raise ConfigurationError(f"Invalid rate {value!r}: expected 'n/period'")

    count_str, period_str = (part.strip() for part in value.split("/", 1))
    if not count_str.isdigit() or int(count_str) < 1:
        raise ConfigurationError(f"Invalid rate {value!r}: count must be a positive integer")

    # A bare unit ("m") means one of that unit.
    if period_str and period_str[0].isalpha():
        period_str = "1" + period_str
    period = parse_duration(period_str)
    if period <= 0:
        raise ConfigurationError(f"Invalid rate {value!r}: period must be positive")
    return Rate(count=int(count_str), period=period)


def validate_cron(expr: str) -> str:
    """Return *expr* stripped if it is a valid cron expression."""
    if not isinstance(expr, str) or not croniter.is_valid(expr.strip()):
        raise ConfigurationError(f"Invalid cron expression: {expr!r}")
    return expr.strip()


def next_cron_time(expr: str, after: float) -> float:
    """Epoch seconds of the first cron tick strictly after *after*.

    The expression is read in the host's local time zone, so
    ``"0 9 * * *"`` means 09:00 wall-clock time.
    """
    # Naive local datetimes let mktime apply the DST offset of each tick.
    schedule = croniter(expr, datetime.fromtimestamp(after))
    tick = schedule.get_next(datetime).timestamp()
    # Repeated wall-clock hours when clocks go back can map behind *after*.
    while tick <= after:
        tick = schedule.get_next(datetime).timestamp()
    return tick
