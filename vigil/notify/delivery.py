"""Delivery layer — hands flushed notifications to their channels."""

from __future__ import annotations

import abc

import structlog

from vigil.notify.channels import NotificationChannel
from vigil.notify.types import Delivery, NotifyConfig

# Dedicated structured logger recording every delivery.
delivery_logger = structlog.get_logger("delivery_log")

logger = structlog.get_logger(__name__)


class Deliverer(abc.ABC):
    """Receives exactly one call per aggregator flush."""

    @abc.abstractmethod
    async def deliver(self, config: NotifyConfig, delivery: Delivery) -> None:
        """Deliver the combined title/body for *config*."""

    async def close(self) -> None:
        """Release resources."""


class ChannelDeliverer(Deliverer):
    """Routes each delivery to the channels registered for its notify config.

    - Every delivery is logged via *delivery_logger*.
    - A config with no channels is log-only.
    - A failing channel is logged and does not stop the others.
    """

    def __init__(self, channels: dict[str, list[NotificationChannel]] | None = None) -> None:
        self._channels: dict[str, list[NotificationChannel]] = channels or {}

    def channels_for(self, config_name: str) -> list[NotificationChannel]:
        return list(self._channels.get(config_name, []))

    async def deliver(self, config: NotifyConfig, delivery: Delivery) -> None:
        delivery_logger.info(
            "delivery",
            config=config.name,
            title=delivery.title,
            body=delivery.body,
            count=delivery.count,
            ids=delivery.notification_ids,
        )
        for ch in self._channels.get(config.name, []):
            try:
                ok = await ch.send(delivery)
            except Exception:
                logger.exception(
                    "channel_dispatch_error",
                    channel=type(ch).__name__,
                    config=config.name,
                    title=delivery.title,
                )
                continue
            if not ok:
                logger.warning(
                    "channel_delivery_failed",
                    channel=type(ch).__name__,
                    config=config.name,
                )

    async def close(self) -> None:
        for channels in self._channels.values():
            for ch in channels:
                try:
                    await ch.close()
                except Exception:
                    logger.exception("channel_close_error", channel=type(ch).__name__)
