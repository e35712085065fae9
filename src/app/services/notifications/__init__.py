"""Notification fan-out."""

from .dispatcher import DISPATCH_TABLE, DispatchRule, NotificationSender, dispatch, map_event
from .senders import LoggingNotificationSender, WebhookNotificationSender

__all__ = [
    "DISPATCH_TABLE",
    "DispatchRule",
    "NotificationSender",
    "dispatch",
    "map_event",
    "LoggingNotificationSender",
    "WebhookNotificationSender",
]
