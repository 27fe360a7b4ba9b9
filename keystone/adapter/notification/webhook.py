"""Webhook notification dispatcher."""

from typing import Any

import httpx
import logfire

from keystone.adapter.error import NotificationError
from keystone.domain.model import Identity
from keystone.domain.service.notification_service import NotificationDispatcher
from keystone.domain.value import NotificationChannel

from .log import recipient_for


class WebhookNotificationDispatcher(NotificationDispatcher):
    """POSTs each notification as JSON to a delivery service."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize webhook dispatcher.

        Args:
            url: Delivery service endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(
        self,
        channel: NotificationChannel,
        identity: Identity,
        payload: dict[str, Any],
    ) -> None:
        """Deliver a notification.

        Raises:
            NotificationError: If the request fails or is refused
        """
        body = {
            "channel": channel.value,
            "identity_id": str(identity.id),
            "recipient": recipient_for(channel, identity),
            "payload": payload,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(self.url, json=body)
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook request failed: {e}") from e

        if not response.is_success:
            logfire.error(
                "Notification webhook refused",
                status_code=response.status_code,
                channel=channel.value,
            )
            raise NotificationError(f"Webhook returned {response.status_code}")
