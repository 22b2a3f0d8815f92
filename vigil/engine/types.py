"""Domain types for the monitor engine — events, occurrences, conditions, actions."""

from __future__ import annotations

import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, Field

# ── Events ───────────────────────────────────────────────────────


class EventKind(StrEnum):
    """Which kind of event source produced an occurrence."""

    SERVICE = "service"
    LOG = "log"
    WATCH = "watch"
    EVERY = "every"
    AT = "at"
    ON = "on"


@dataclass(frozen=True)
class Service:
    """Lines from a service journal."""

    kind: ClassVar[EventKind] = EventKind.SERVICE
    name: str


@dataclass(frozen=True)
class LogFile:
    """Lines appended to a log file."""

    kind: ClassVar[EventKind] = EventKind.LOG
    path: str


@dataclass(frozen=True)
class Watch:
    """Filesystem changes under any of the globs."""

    kind: ClassVar[EventKind] = EventKind.WATCH
    globs: tuple[str, ...]


@dataclass(frozen=True)
class Every:
    """A fixed interval timer, in seconds."""

    kind: ClassVar[EventKind] = EventKind.EVERY
    interval: float


@dataclass(frozen=True)
class At:
    """A cron schedule."""

    kind: ClassVar[EventKind] = EventKind.AT
    cron: str


@dataclass(frozen=True)
class On:
    """Signals raised by other monitors."""

    kind: ClassVar[EventKind] = EventKind.ON
    signals: frozenset[str]


EventSpec = Service | LogFile | Watch | Every | At | On

# Events whose occurrences carry a raw line for match_log / ignore_log.
LINE_EVENTS: frozenset[EventKind] = frozenset({EventKind.SERVICE, EventKind.LOG})


class Occurrence(BaseModel):
    """One firing of an event for a monitor."""

    monitor: str
    event: EventKind
    timestamp: float = Field(default_factory=time.time)
    variables: dict[str, Any] = Field(default_factory=dict)
    line: str | None = None

    @property
    def has_line(self) -> bool:
        return self.event in LINE_EVENTS and self.line is not None


# ── Conditions ───────────────────────────────────────────────────
# Higher priority is evaluated first.


@dataclass(frozen=True)
class Cooldown:
    priority: ClassVar[int] = -10
    key: ClassVar[str] = "cooldown"
    duration: float


@dataclass(frozen=True)
class MatchLog:
    priority: ClassVar[int] = -20
    key: ClassVar[str] = "match_log"
    patterns: tuple[re.Pattern[str], ...]
    match_all: bool = True


@dataclass(frozen=True)
class IgnoreLog:
    priority: ClassVar[int] = -21
    key: ClassVar[str] = "ignore_log"
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class Unique:
    priority: ClassVar[int] = -30
    key: ClassVar[str] = "unique"
    varname: str


@dataclass(frozen=True)
class If:
    priority: ClassVar[int] = -50
    key: ClassVar[str] = "if"
    expr: str


@dataclass(frozen=True)
class Threshold:
    priority: ClassVar[int] = -90
    key: ClassVar[str] = "threshold"
    count: int
    window: float


Condition = Cooldown | MatchLog | IgnoreLog | Unique | If | Threshold


def sort_conditions(conditions: list[Condition] | tuple[Condition, ...]) -> tuple[Condition, ...]:
    """Descending priority; ``sorted`` is stable so ties keep declaration order."""
    return tuple(sorted(conditions, key=lambda c: -c.priority))


# ── Actions ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecShell:
    """Run a command line through the shell, variables in the environment."""

    command: str


@dataclass(frozen=True)
class ExecArgv:
    """Run a binary directly; each argument is a template."""

    argv: tuple[str, ...]


@dataclass(frozen=True)
class Notify:
    title: str
    body: str = ""
    id: str | None = None
    config: str = "default"


@dataclass(frozen=True)
class SetVars:
    """Assign templated values to global variables."""

    values: Mapping[str, Any]


@dataclass(frozen=True)
class PushVars:
    """Append templated values to global list variables."""

    values: Mapping[str, Any]


Action = ExecShell | ExecArgv | Notify | SetVars | PushVars


# ── Monitor ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Monitor:
    """A compiled monitor definition. Immutable once built.

    Conditions are stored already sorted into evaluation order.
    """

    name: str
    events: tuple[EventSpec, ...] = ()
    conditions: tuple[Condition, ...] = ()
    actions: tuple[Action, ...] = ()
    variables: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "conditions", sort_conditions(self.conditions))

    def subscribes_to(self, kind: EventKind) -> bool:
        return any(event.kind == kind for event in self.events)
