"""Notification service package."""

from .service import NotificationFeed, NotificationService
from .templates import RenderedNotification

__all__ = [
    "NotificationFeed",
    "NotificationService",
    "RenderedNotification",
]
