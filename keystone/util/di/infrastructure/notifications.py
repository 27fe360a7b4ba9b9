"""Notification infrastructure providers."""

from dishka import Scope, provide

from keystone.adapter.notification import (
    LogNotificationDispatcher,
    WebhookNotificationDispatcher,
)
from keystone.config import NotificationSettings
from keystone.domain.service import NotificationDispatcher
from keystone.util.di.base import ProviderBase


class NotificationsProvider(ProviderBase):
    """Notifications component base."""

    __mock_component__ = "notifications"


class ProdNotificationsProvider(NotificationsProvider):
    """Production notification dispatcher selected by configuration."""

    __is_mock__ = False

    @provide(scope=Scope.APP)
    def get_dispatcher(self, settings: NotificationSettings) -> NotificationDispatcher:
        """Provide notification dispatcher.

        Returns:
            Webhook dispatcher when configured, otherwise the log dispatcher
        """
        if settings.backend == "webhook":
            # Settings validation guarantees the URL is present
            return WebhookNotificationDispatcher(
                url=settings.webhook_url or "",
                timeout=settings.timeout_seconds,
            )
        return LogNotificationDispatcher()
