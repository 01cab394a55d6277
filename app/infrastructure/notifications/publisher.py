"""Utility helpers to push notifications to websocket subscribers."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from app.domain.entities import Notification
from app.domain.errors import TransientChannelError

from .manager import NotificationConnectionManager, notification_manager

logger = logging.getLogger(__name__)


class PublishOutcome(str, Enum):
    """Result of publishing to a user's realtime topic."""

    DELIVERED = "DELIVERED"
    NO_SUBSCRIBER = "NO_SUBSCRIBER"


class NotificationPublisher:
    """Serialize notifications and deliver them to the user's subscribers."""

    def __init__(self, manager: NotificationConnectionManager) -> None:
        self._manager = manager

    def publish(self, user_id: int, payload: dict[str, Any]) -> PublishOutcome:
        """Deliver ``payload`` to every subscriber of ``user_id``.

        Nothing is queued when the user has no open connection.
        """

        if self._manager.subscriber_count(user_id) == 0:
            return PublishOutcome.NO_SUBSCRIBER

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            # Already on the event loop: the send cannot be awaited synchronously.
            loop.create_task(self._manager.send_to_user(user_id, payload))
            return PublishOutcome.DELIVERED

        portal = self._manager.portal
        if portal is None:
            raise TransientChannelError("Realtime event loop is not running")
        try:
            delivered = portal.call(self._manager.send_to_user, user_id, payload)
        except RuntimeError as exc:
            raise TransientChannelError(f"Realtime portal unavailable: {exc}") from exc
        if delivered == 0:
            return PublishOutcome.NO_SUBSCRIBER
        return PublishOutcome.DELIVERED


def serialize_notification(notification: Notification) -> dict[str, Any]:
    """Return the websocket payload representation for ``notification``."""

    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.notification_type.value,
        "priority": notification.priority.value,
        "title": notification.title,
        "message": notification.message,
        "payload": notification.payload or {},
        "created_at": notification.created_at.isoformat()
        if notification.created_at
        else None,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
    }


notification_publisher = NotificationPublisher(notification_manager)


__all__ = [
    "NotificationPublisher",
    "PublishOutcome",
    "notification_publisher",
    "serialize_notification",
]
