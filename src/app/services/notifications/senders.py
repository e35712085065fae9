"""Outbound delivery of rendered messages."""

from __future__ import annotations

import logging

import httpx

from ...config import settings
from ...models.domain import Message

logger = logging.getLogger(__name__)


class LoggingNotificationSender:
    """Used when no channel provider is configured. Keeps the last messages for inspection."""

    def __init__(self, keep: int = 100) -> None:
        self.keep = keep
        self.sent: list[Message] = []

    def send(self, message: Message) -> None:
        logger.info(
            f"[{message.channel.value}] to {message.audience.value}:{message.recipient_ref} - {message.subject}"
        )
        self.sent.append(message)
        del self.sent[: -self.keep]


class WebhookNotificationSender:
    """Posts each message to the channel provider webhook."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url or settings.notification_webhook_url
        if not self.url:
            raise ValueError("Notification webhook URL is not configured.")
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, message: Message) -> None:
        response = await self._client.post(
            self.url,
            json={
                "channel": message.channel.value,
                "audience": message.audience.value,
                "recipient_ref": message.recipient_ref,
                "subject": message.subject,
                "body": message.body,
            },
        )
        response.raise_for_status()
