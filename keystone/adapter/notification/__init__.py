"""Notification dispatchers."""

from .log import LogNotificationDispatcher
from .mock import MockNotificationDispatcher, SentNotification
from .webhook import WebhookNotificationDispatcher

__all__ = [
    "LogNotificationDispatcher",
    "MockNotificationDispatcher",
    "SentNotification",
    "WebhookNotificationDispatcher",
]
