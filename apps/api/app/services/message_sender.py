"""Outbound messaging boundary (SMS, email, document packets).

Delivery is delegated to a provider webhook. With no webhook configured the
sender runs dry: it logs the attempt and reports success, so local and test
environments never reach a real provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from app.core.config import settings
from app.services.automation_errors import MessageDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundMessage:
    channel: str  # sms | email | document_packet
    to: str
    body: str
    subject: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryReceipt:
    provider_message_id: str | None
    dry_run: bool = False


class MessageSender(Protocol):
    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        """Deliver a message or raise MessageDeliveryError."""


class WebhookMessageSender:
    """Posts messages as JSON to the configured provider webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = (webhook_url if webhook_url is not None else settings.MESSAGING_WEBHOOK_URL).strip()
        self.token = token if token is not None else settings.MESSAGING_WEBHOOK_TOKEN
        self.timeout = timeout if timeout is not None else settings.MESSAGING_TIMEOUT_SECONDS
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        if not self.is_configured():
            # Metadata only carries ids; recipient and body stay out of logs
            logger.info(
                "Messaging webhook not configured; dry run for %s",
                message.channel,
                extra=message.metadata,
            )
            return DeliveryReceipt(provider_message_id=None, dry_run=True)

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = {
            "channel": message.channel,
            "to": message.to,
            "subject": message.subject,
            "body": message.body,
            "metadata": message.metadata,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.webhook_url, headers=headers, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MessageDeliveryError(
                f"Messaging provider returned {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise MessageDeliveryError(f"Messaging provider unreachable: {exc.__class__.__name__}") from exc

        provider_id: str | None = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            raw_id = data.get("id") or data.get("message_id")
            provider_id = str(raw_id) if raw_id else None
        return DeliveryReceipt(provider_message_id=provider_id)
