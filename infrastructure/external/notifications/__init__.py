"""Outbound notification delivery adapters."""
from .sender import (
    HttpNotificationSender,
    LoggingNotificationSender,
    NotificationDeliveryError,
    build_notification_sender,
)

__all__ = [
    "HttpNotificationSender",
    "LoggingNotificationSender",
    "NotificationDeliveryError",
    "build_notification_sender",
]
