"""Notification dispatch domain service."""

from typing import Any

import logfire

from keystone.domain.model import Identity
from keystone.domain.value import NotificationChannel

from .base import Service


class NotificationDispatcher:
    """Generic notification dispatcher interface for all delivery backends."""

    async def send(
        self,
        channel: NotificationChannel,
        identity: Identity,
        payload: dict[str, Any],
    ) -> None:
        """Deliver a notification.

        Args:
            channel: Delivery channel
            identity: Recipient
            payload: Template name and template data

        Raises:
            AdapterError: If delivery fails
        """
        raise NotImplementedError


class NotificationService(Service):
    """Fire-and-forget wrapper around the dispatcher.

    Delivery failures are logged and reported as False; they never fail
    the surrounding auth operation.
    """

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        """Initialize notification service.

        Args:
            dispatcher: Delivery backend
        """
        self.dispatcher = dispatcher

    async def notify(
        self,
        channel: NotificationChannel,
        identity: Identity,
        payload: dict[str, Any],
    ) -> bool:
        """Send a notification, swallowing delivery errors.

        Returns:
            True if the dispatcher accepted the notification
        """
        with logfire.span(
            "notification_service.notify",
            channel=channel.value,
            identity_id=str(identity.id),
            template=payload.get("template"),
        ):
            try:
                await self.dispatcher.send(channel, identity, payload)
                return True
            except Exception as e:
                logfire.error(
                    "Notification delivery failed",
                    channel=channel.value,
                    identity_id=str(identity.id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return False
