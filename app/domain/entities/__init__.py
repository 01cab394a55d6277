"""Domain entities exposed by the application."""

from .channel_attempt import AttemptOutcome, AttemptState, ChannelAttempt, aggregate_status
from .deadline import DeadlineReminder, UpcomingDeadline
from .notification import (
    ALL_CHANNELS,
    DeliveryChannel,
    DispatchResult,
    Notification,
    NotificationPriority,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
    STATUS_PREDECESSORS,
    can_transition,
    sort_channels,
)
from .preference import NotificationPreference
from .user import User

__all__ = [
    "ALL_CHANNELS",
    "AttemptOutcome",
    "AttemptState",
    "ChannelAttempt",
    "DeadlineReminder",
    "DeliveryChannel",
    "DispatchResult",
    "Notification",
    "NotificationPreference",
    "NotificationPriority",
    "NotificationRequest",
    "NotificationStatus",
    "NotificationType",
    "STATUS_PREDECESSORS",
    "UpcomingDeadline",
    "User",
    "aggregate_status",
    "can_transition",
    "sort_channels",
]
