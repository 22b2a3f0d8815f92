"""Domain types for notification aggregation and delivery."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

from pydantic import BaseModel, Field, SecretStr

from vigil.core.clock import TimerHandle
from vigil.core.durations import Rate

DEFAULT_CONFIG = "default"


@dataclass(frozen=True)
class Debounce:
    """Flush once no new notification has arrived for *duration* seconds."""

    duration: float


@dataclass(frozen=True)
class CronBatch:
    """Flush everything buffered at each tick of *schedule*."""

    schedule: str


AggregateMode = Debounce | CronBatch


@dataclass(frozen=True)
class NotifyConfig:
    """A compiled, named notify configuration."""

    name: str
    limit: Rate | None = None
    aggregate: AggregateMode | None = None
    aggregate_timeout: float | None = None
    aggregate_title: str = "Aggregated notification"
    pushbullet: SecretStr | None = None
    webhook: SecretStr | None = None


class Notification(BaseModel):
    """A notification produced by a monitor's ``notify`` action."""

    id: str
    title: str
    body: str = ""
    config: str = DEFAULT_CONFIG
    monitor: str = ""
    timestamp: float = Field(default_factory=time.time)


class Delivery(BaseModel):
    """One combined payload handed to the delivery layer."""

    config: str
    title: str
    body: str = ""
    notification_ids: list[str] = Field(default_factory=list)
    count: int = 1


class BucketState(StrEnum):
    BUFFERING = "BUFFERING"
    FLUSHING = "FLUSHING"


@dataclass
class AggregationBucket:
    """Notifications with the same (config, id) waiting for one combined flush."""

    config: str
    id: str
    first_buffered: float
    last_buffered: float
    notifications: list[Notification] = field(default_factory=list)
    state: BucketState = BucketState.BUFFERING
    timer: TimerHandle | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.config, self.id)
