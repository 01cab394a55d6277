"""Domain entity for per-user channel preferences."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .notification import DeliveryChannel, NotificationType


@dataclass
class NotificationPreference:
    """Channels a user accepts for one notification type."""

    user_id: int
    notification_type: NotificationType
    channels: frozenset[DeliveryChannel]
    updated_at: datetime | None = None


__all__ = ["NotificationPreference"]
