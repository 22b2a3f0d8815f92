"""Convenience factory for wiring the notification stack."""

from __future__ import annotations

from vigil.core.clock import Scheduler
from vigil.core.config import NotifyConfigModel, Settings
from vigil.core.durations import is_duration, parse_duration, parse_rate, validate_cron
from vigil.core.exceptions import ConfigurationError
from vigil.notify.aggregator import NotificationAggregator
from vigil.notify.channels import NotificationChannel, PushBulletChannel, WebhookChannel
from vigil.notify.delivery import ChannelDeliverer
from vigil.notify.types import DEFAULT_CONFIG, AggregateMode, CronBatch, Debounce, NotifyConfig
from vigil.state.window_counter import WindowCounter


def build_notify_config(name: str, model: NotifyConfigModel) -> NotifyConfig:
    """Compile one notify config.

    ``aggregate`` is a debounce duration if it parses as one (``0`` disables
    aggregation), otherwise it must be a cron expression.

    Raises:
        ConfigurationError: A limit, duration or cron expression is invalid.
    """
    try:
        limit = parse_rate(model.limit) if model.limit is not None else None
        aggregate = _parse_aggregate(model.aggregate)

        timeout: float | None = None
        if model.aggregate_timeout is not None:
            if not isinstance(aggregate, Debounce):
                raise ConfigurationError(
                    "Key `aggregate_timeout` requires a debounce duration in `aggregate`"
                )
            timeout = parse_duration(model.aggregate_timeout)
            if timeout <= 0:
                raise ConfigurationError("Key `aggregate_timeout` must be positive")
    except ConfigurationError as exc:
        raise ConfigurationError(f"Notify config `{name}`: {exc}") from exc

    return NotifyConfig(
        name=name,
        limit=limit,
        aggregate=aggregate,
        aggregate_timeout=timeout,
        aggregate_title=model.aggregate_title,
        pushbullet=model.pushbullet,
        webhook=model.webhook,
    )


def _parse_aggregate(value: str | int | float | None) -> AggregateMode | None:
    if value is None:
        return None
    if is_duration(value):
        seconds = parse_duration(value)
        return Debounce(duration=seconds) if seconds > 0 else None
    if isinstance(value, str):
        return CronBatch(schedule=validate_cron(value))
    raise ConfigurationError(f"Invalid aggregate: {value!r}")


def build_notify_configs(settings: Settings) -> list[NotifyConfig]:
    """Compile every notify config; an implicit ``default`` is always present."""
    configs = [build_notify_config(name, model) for name, model in settings.notify.items()]
    if DEFAULT_CONFIG not in settings.notify:
        configs.append(NotifyConfig(name=DEFAULT_CONFIG))
    return configs


def build_channels(config: NotifyConfig) -> list[NotificationChannel]:
    channels: list[NotificationChannel] = []
    if config.pushbullet is not None:
        channels.append(PushBulletChannel(config.pushbullet.get_secret_value()))
    if config.webhook is not None:
        channels.append(WebhookChannel(config.webhook.get_secret_value()))
    return channels


def create_notify_stack(
    settings: Settings,
    scheduler: Scheduler,
    windows: WindowCounter | None = None,
) -> tuple[NotificationAggregator, ChannelDeliverer]:
    """Build an aggregator + channel deliverer from config.

    Returns:
        (aggregator, deliverer)
    """
    configs = build_notify_configs(settings)
    deliverer = ChannelDeliverer({c.name: build_channels(c) for c in configs})
    aggregator = NotificationAggregator(
        configs=configs,
        deliverer=deliverer,
        scheduler=scheduler,
        windows=windows,
    )
    return aggregator, deliverer
