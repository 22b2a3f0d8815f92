"""Notification channels — PushBullet and generic webhook delivery."""

from __future__ import annotations

import abc

import aiohttp
import structlog

from vigil.notify.types import Delivery

logger = structlog.get_logger(__name__)

PUSHBULLET_URL = "https://api.pushbullet.com/v2/pushes"


class NotificationChannel(abc.ABC):
    """Base class for delivery channels."""

    @abc.abstractmethod
    async def send(self, delivery: Delivery) -> bool:
        """Send a combined notification. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class _HttpChannel(NotificationChannel):
    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class PushBulletChannel(_HttpChannel):
    """Delivers notes through the PushBullet API."""

    def __init__(self, access_token: str) -> None:
        super().__init__()
        self._token = access_token

    async def send(self, delivery: Delivery) -> bool:
        payload = {"type": "note", "title": delivery.title, "body": delivery.body}
        headers = {"Access-Token": self._token}

        try:
            session = self._get_session()
            async with session.post(PUSHBULLET_URL, json=payload, headers=headers) as resp:
                if resp.status == 200:
                    return True
                body = await resp.text()
                logger.warning(
                    "pushbullet_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception("pushbullet_send_error")
            return False


class WebhookChannel(_HttpChannel):
    """POSTs a JSON document to an arbitrary URL."""

    def __init__(self, url: str) -> None:
        super().__init__()
        self._url = url

    async def send(self, delivery: Delivery) -> bool:
        payload = {
            "config": delivery.config,
            "title": delivery.title,
            "body": delivery.body,
            "count": delivery.count,
            "ids": delivery.notification_ids,
        }

        try:
            session = self._get_session()
            async with session.post(self._url, json=payload) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning(
                    "webhook_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception("webhook_send_error")
            return False
