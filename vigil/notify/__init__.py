"""Notification aggregation, rate limiting, and delivery."""

from vigil.notify.aggregator import NotificationAggregator, combine
from vigil.notify.channels import NotificationChannel, PushBulletChannel, WebhookChannel
from vigil.notify.delivery import ChannelDeliverer, Deliverer
from vigil.notify.factory import build_notify_config, build_notify_configs, create_notify_stack
from vigil.notify.types import (
    AggregationBucket,
    CronBatch,
    Debounce,
    Delivery,
    Notification,
    NotifyConfig,
)

__all__ = [
    "AggregationBucket",
    "ChannelDeliverer",
    "CronBatch",
    "Debounce",
    "Deliverer",
    "Delivery",
    "Notification",
    "NotificationAggregator",
    "NotificationChannel",
    "NotifyConfig",
    "PushBulletChannel",
    "WebhookChannel",
    "build_notify_config",
    "build_notify_configs",
    "create_notify_stack",
    "combine",
]
