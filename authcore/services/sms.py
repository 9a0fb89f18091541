"""
SMS delivery. The console sender is for development; the HTTP sender
posts to a provider gateway with httpx.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from authcore.core.config import Settings
from authcore.core.exceptions import DeliveryFailed
from authcore.core.logging import mask_phone

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    async def send(self, phone: str, message: str) -> None: ...


class ConsoleSmsSender:
    async def send(self, phone: str, message: str) -> None:
        # Message bodies carry codes; they stay out of the log.
        logger.info("SMS to %s queued on console provider (%d chars)", mask_phone(phone), len(message))


class HttpSmsSender:
    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        sender: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout
        self._transport = transport

    async def send(self, phone: str, message: str) -> None:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {"to": phone, "from": self._sender, "text": message}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("SMS gateway unreachable for %s: %s", mask_phone(phone), exc)
            raise DeliveryFailed() from exc
        if resp.status_code >= 400:
            logger.warning(
                "SMS gateway rejected message to %s: status=%s body=%s",
                mask_phone(phone),
                resp.status_code,
                resp.text[:200],
            )
            raise DeliveryFailed()


def build_sms_sender(settings: Settings) -> SmsSender:
    if settings.SMS_PROVIDER == "http":
        return HttpSmsSender(
            api_url=settings.SMS_API_URL or "",
            api_key=settings.SMS_API_KEY,
            sender=settings.SMS_SENDER,
            timeout=settings.SMS_TIMEOUT_SECONDS,
        )
    return ConsoleSmsSender()
