"""In-memory notification dispatcher for testing."""

from typing import Any

from pydantic import BaseModel

from keystone.domain.model import Identity
from keystone.domain.service.notification_service import NotificationDispatcher
from keystone.domain.value import IdentityId, NotificationChannel


class SentNotification(BaseModel):
    """A notification captured by the mock dispatcher."""

    channel: NotificationChannel
    identity_id: IdentityId
    payload: dict[str, Any]


class MockNotificationDispatcher(NotificationDispatcher):
    """Captures notifications so tests can read the codes that were sent."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[SentNotification] = []
        self.fail = fail

    async def send(
        self,
        channel: NotificationChannel,
        identity: Identity,
        payload: dict[str, Any],
    ) -> None:
        if self.fail:
            raise ConnectionError("Mock dispatcher is down")
        self.sent.append(
            SentNotification(channel=channel, identity_id=identity.id, payload=payload)
        )

    def last_code(self, identity_id: IdentityId) -> str | None:
        """Most recent one-time code sent to ``identity_id``."""
        for notification in reversed(self.sent):
            if (
                notification.identity_id == identity_id
                and notification.payload.get("template") == "otp_code"
            ):
                return notification.payload["code"]
        return None
