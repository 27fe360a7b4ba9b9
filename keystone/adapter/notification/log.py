"""Logging notification dispatcher for development."""

from typing import Any

import logfire

from keystone.domain.model import Identity
from keystone.domain.service.notification_service import NotificationDispatcher
from keystone.domain.value import NotificationChannel


class LogNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to the log instead of delivering them.

    Development only: one-time codes appear in the log output.
    """

    async def send(
        self,
        channel: NotificationChannel,
        identity: Identity,
        payload: dict[str, Any],
    ) -> None:
        logfire.info(
            "Notification (log backend)",
            channel=channel.value,
            identity_id=str(identity.id),
            recipient=recipient_for(channel, identity),
            payload=payload,
        )


def recipient_for(channel: NotificationChannel, identity: Identity) -> str | None:
    if channel == NotificationChannel.SMS:
        return identity.phone_number
    return identity.email
