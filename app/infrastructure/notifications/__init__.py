"""Realtime notification helpers for the infrastructure layer."""

from .manager import NotificationConnectionManager, Subscriber, notification_manager
from .publisher import (
    NotificationPublisher,
    PublishOutcome,
    notification_publisher,
    serialize_notification,
)

__all__ = [
    "NotificationConnectionManager",
    "Subscriber",
    "notification_manager",
    "NotificationPublisher",
    "PublishOutcome",
    "notification_publisher",
    "serialize_notification",
]
