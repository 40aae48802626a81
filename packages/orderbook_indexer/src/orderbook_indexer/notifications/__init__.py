"""Post-commit notification hooks."""

from orderbook_indexer.notifications.base import (
    CompositeNotificationHook,
    NotificationHook,
    NullNotificationHook,
    safe_notify,
)
from orderbook_indexer.notifications.stream import RedisStreamNotifier
from orderbook_indexer.notifications.webhook import WebhookError, WebhookNotifier

__all__ = [
    "CompositeNotificationHook",
    "NotificationHook",
    "NullNotificationHook",
    "RedisStreamNotifier",
    "WebhookError",
    "WebhookNotifier",
    "safe_notify",
]
