"""NotificationAggregator — debounce, cron batching, and rate-limited delivery."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

import structlog

from vigil.core.clock import Scheduler, TimerHandle
from vigil.core.durations import next_cron_time
from vigil.notify.delivery import Deliverer
from vigil.notify.types import (
    DEFAULT_CONFIG,
    AggregationBucket,
    BucketState,
    CronBatch,
    Debounce,
    Delivery,
    Notification,
    NotifyConfig,
)
from vigil.state.window_counter import WindowCounter

logger = structlog.stdlib.get_logger()


def rate_limit_key(config: str) -> str:
    return f"notify:{config}"


def combine(config: NotifyConfig, notifications: list[Notification]) -> Delivery:
    """Merge buffered notifications into one payload.

    A single notification is passed through untouched; several are joined
    under the config's aggregate title.
    """
    ids = [n.id for n in notifications]
    if len(notifications) == 1:
        only = notifications[0]
        return Delivery(
            config=config.name,
            title=only.title,
            body=only.body,
            notification_ids=ids,
            count=1,
        )

    sections = [f"{n.title}\n{n.body}" if n.body else n.title for n in notifications]
    return Delivery(
        config=config.name,
        title=config.aggregate_title,
        body="\n\n".join(sections),
        notification_ids=ids,
        count=len(notifications),
    )


class NotificationAggregator:
    """Buffers notifications per (config, id) and flushes them as one delivery.

    Per bucket the lifecycle is Empty -> Buffering -> Flushing -> Empty:

    - no ``aggregate``: delivered right away.
    - ``Debounce(D)``: each submit pushes the flush out to ``now + D``; with
      ``aggregate_timeout`` the flush never lands later than
      ``first_buffered + timeout``.
    - ``CronBatch``: buffered until the next cron tick flushes every bucket
      of that config.

    Every delivery then passes the config's ``limit``. Over the limit, the
    delivery is deferred (FIFO per config) until the sliding window has room,
    never dropped.

    Each bucket owns at most one pending timer; rescheduling cancels the old
    handle and a stale timer firing afterwards is a no-op.
    """

    def __init__(
        self,
        configs: Iterable[NotifyConfig],
        deliverer: Deliverer,
        scheduler: Scheduler,
        windows: WindowCounter | None = None,
    ) -> None:
        self._configs: dict[str, NotifyConfig] = {c.name: c for c in configs}
        self._configs.setdefault(DEFAULT_CONFIG, NotifyConfig(name=DEFAULT_CONFIG))
        self._deliverer = deliverer
        self._scheduler = scheduler
        self._windows = windows or WindowCounter()

        self._buckets: dict[tuple[str, str], AggregationBucket] = {}
        self._deferred: dict[str, deque[Delivery]] = {}
        self._deferred_timers: dict[str, TimerHandle] = {}
        self._cron_timers: dict[str, TimerHandle] = {}
        self._running = False
        # Set by stop(); later submissions skip aggregation and timers.
        self._stopped = False

        # Stats
        self._submitted = 0
        self._delivered = 0
        self._deferred_total = 0
        self._delivery_errors = 0

    # ── Properties ────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, int]:
        return {
            "submitted": self._submitted,
            "delivered": self._delivered,
            "deferred": self._deferred_total,
            "delivery_errors": self._delivery_errors,
            "buckets": len(self._buckets),
            "pending_deferred": sum(len(q) for q in self._deferred.values()),
        }

    @property
    def configs(self) -> dict[str, NotifyConfig]:
        return dict(self._configs)

    def bucket(self, config: str, notification_id: str) -> AggregationBucket | None:
        return self._buckets.get((config, notification_id))

    def pending_deferred(self, config: str) -> int:
        return len(self._deferred.get(config, ()))

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        """Arm the cron schedules of every cron-batched config."""
        if self._running:
            return
        self._running = True
        self._stopped = False
        for config in self._configs.values():
            self._ensure_cron(config)

    async def stop(self) -> None:
        """Cancel timers and deliver everything still buffered or deferred."""
        self._running = False
        self._stopped = True
        for handle in self._cron_timers.values():
            handle.cancel()
        self._cron_timers.clear()

        for bucket in list(self._buckets.values()):
            await self._flush_bucket(bucket, reason="shutdown")

        for handle in self._deferred_timers.values():
            handle.cancel()
        self._deferred_timers.clear()
        for name, queue in list(self._deferred.items()):
            config = self._configs[name]
            while queue:
                delivery = queue.popleft()
                logger.info("deferred_delivery_on_shutdown", config=name, title=delivery.title)
                await self._deliver(config, delivery)
        self._deferred.clear()

    # ── Submission ────────────────────────────────────────────────

    async def submit(self, notification: Notification) -> None:
        """Accept a notification for aggregation and eventual delivery."""
        self._submitted += 1
        config = self._config_for(notification.config)
        if self._stopped:
            logger.warning(
                "notification_after_stop", config=config.name, title=notification.title
            )
            await self._deliver(config, combine(config, [notification]))
            return

        mode = config.aggregate

        if mode is None:
            await self._dispatch(config, [notification])
            return

        now = self._scheduler.now()
        key = (config.name, notification.id)
        bucket = self._buckets.get(key)

        if isinstance(mode, CronBatch):
            self._ensure_cron(config)
            if bucket is None:
                bucket = self._new_bucket(config, notification.id, now)
            bucket.notifications.append(notification)
            bucket.last_buffered = now
            return

        if isinstance(mode, Debounce):
            if bucket is None:
                bucket = self._new_bucket(config, notification.id, now)
                bucket.notifications.append(notification)
                self._arm_debounce(config, mode, bucket, now)
                return

            bucket.notifications.append(notification)
            bucket.last_buffered = now
            timeout = config.aggregate_timeout
            if timeout is not None and now - bucket.first_buffered >= timeout:
                await self._flush_bucket(bucket, reason="timeout")
                return
            self._arm_debounce(config, mode, bucket, now)
            return

        raise TypeError(f"Unhandled aggregate mode: {type(mode).__name__}")

    # ── Flushing ──────────────────────────────────────────────────

    async def flush(self, config: str, notification_id: str) -> bool:
        """Flush one bucket now. Returns False if it was empty."""
        bucket = self._buckets.get((config, notification_id))
        if bucket is None:
            return False
        await self._flush_bucket(bucket, reason="manual")
        return True

    async def flush_config(self, config: str, reason: str = "manual") -> int:
        """Flush every bucket of one config. Returns the number flushed."""
        buckets = [b for b in self._buckets.values() if b.config == config]
        for bucket in buckets:
            await self._flush_bucket(bucket, reason=reason)
        return len(buckets)

    async def _flush_bucket(self, bucket: AggregationBucket, reason: str) -> None:
        # Detach first so submits during delivery start a fresh bucket.
        if self._buckets.get(bucket.key) is not bucket:
            return
        del self._buckets[bucket.key]
        if bucket.timer is not None:
            bucket.timer.cancel()
            bucket.timer = None
        bucket.state = BucketState.FLUSHING

        logger.debug(
            "bucket_flush",
            config=bucket.config,
            id=bucket.id,
            reason=reason,
            count=len(bucket.notifications),
        )
        await self._dispatch(self._configs[bucket.config], bucket.notifications)

    def _new_bucket(self, config: NotifyConfig, notification_id: str, now: float) -> AggregationBucket:
        bucket = AggregationBucket(
            config=config.name,
            id=notification_id,
            first_buffered=now,
            last_buffered=now,
        )
        self._buckets[bucket.key] = bucket
        return bucket

    def _arm_debounce(
        self,
        config: NotifyConfig,
        mode: Debounce,
        bucket: AggregationBucket,
        now: float,
    ) -> None:
        delay = mode.duration
        if config.aggregate_timeout is not None:
            delay = min(delay, bucket.first_buffered + config.aggregate_timeout - now)
        delay = max(0.0, delay)

        if bucket.timer is not None:
            bucket.timer.cancel()

        async def _expired() -> None:
            # Ignore a timer that was replaced or whose bucket already flushed.
            if self._buckets.get(bucket.key) is bucket and bucket.timer is handle:
                await self._flush_bucket(bucket, reason="debounce")

        handle = self._scheduler.call_later(delay, _expired)
        bucket.timer = handle

    # ── Cron ──────────────────────────────────────────────────────

    def _ensure_cron(self, config: NotifyConfig) -> None:
        if not isinstance(config.aggregate, CronBatch) or config.name in self._cron_timers:
            return
        self._schedule_cron(config)

    def _schedule_cron(self, config: NotifyConfig) -> None:
        assert isinstance(config.aggregate, CronBatch)
        when = next_cron_time(config.aggregate.schedule, self._scheduler.now())

        async def _tick() -> None:
            if self._cron_timers.get(config.name) is not handle:
                return
            self._schedule_cron(config)
            flushed = await self.flush_config(config.name, reason="cron")
            logger.debug("cron_tick", config=config.name, flushed=flushed)

        handle = self._scheduler.call_at(when, _tick)
        self._cron_timers[config.name] = handle

    # ── Rate limiting and delivery ────────────────────────────────

    async def _dispatch(self, config: NotifyConfig, notifications: list[Notification]) -> None:
        delivery = combine(config, notifications)
        limit = config.limit
        if limit is None:
            await self._deliver(config, delivery)
            return

        queue = self._deferred.get(config.name)
        if queue:
            # Earlier deliveries are still waiting; keep FIFO order.
            queue.append(delivery)
            self._deferred_total += 1
            return

        if self._take_capacity(config):
            await self._deliver(config, delivery)
            return

        self._deferred.setdefault(config.name, deque()).append(delivery)
        self._deferred_total += 1
        logger.info(
            "delivery_deferred",
            config=config.name,
            title=delivery.title,
            limit=str(limit),
        )
        self._arm_deferred(config)

    def _take_capacity(self, config: NotifyConfig) -> bool:
        """Reserve one slot in the config's window if one is free."""
        assert config.limit is not None
        key = rate_limit_key(config.name)
        now = self._scheduler.now()
        if self._windows.count_in_window(key, config.limit.period, now) >= config.limit.count:
            return False
        self._windows.record(key, now)
        return True

    def _arm_deferred(self, config: NotifyConfig) -> None:
        if config.name in self._deferred_timers:
            return
        assert config.limit is not None
        delay = self._windows.time_until_below(
            rate_limit_key(config.name),
            config.limit.count,
            config.limit.period,
            self._scheduler.now(),
        )

        async def _drain() -> None:
            if self._deferred_timers.get(config.name) is not handle:
                return
            del self._deferred_timers[config.name]
            await self._drain_deferred(config)

        handle = self._scheduler.call_later(delay, _drain)
        self._deferred_timers[config.name] = handle

    async def _drain_deferred(self, config: NotifyConfig) -> None:
        queue = self._deferred.get(config.name)
        while queue and self._take_capacity(config):
            delivery = queue.popleft()
            await self._deliver(config, delivery)
        if queue:
            self._arm_deferred(config)
        else:
            self._deferred.pop(config.name, None)

    async def _deliver(self, config: NotifyConfig, delivery: Delivery) -> None:
        try:
            await self._deliverer.deliver(config, delivery)
        except Exception:
            self._delivery_errors += 1
            logger.exception(
                "notification_delivery_error",
                config=config.name,
                title=delivery.title,
            )
            return
        self._delivered += 1

    def _config_for(self, name: str) -> NotifyConfig:
        config = self._configs.get(name)
        if config is None:
            logger.warning("unknown_notify_config", config=name, fallback=DEFAULT_CONFIG)
            config = self._configs[DEFAULT_CONFIG]
        return config
