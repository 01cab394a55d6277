"""Domain entity representing a user notification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable


class NotificationType(str, Enum):
    """Kinds of events a user can be notified about."""

    TASK_ASSIGNED = "TASK_ASSIGNED"
    DEADLINE_REMINDER = "DEADLINE_REMINDER"
    STATUS_CHANGED = "STATUS_CHANGED"
    COMMENT_MENTION = "COMMENT_MENTION"


class NotificationPriority(str, Enum):
    """Relative urgency attached to a notification."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class DeliveryChannel(str, Enum):
    """Delivery media a notification can be routed through."""

    EMAIL = "EMAIL"
    REALTIME = "REALTIME"


ALL_CHANNELS: frozenset[DeliveryChannel] = frozenset(DeliveryChannel)


class NotificationStatus(str, Enum):
    """Lifecycle of a notification as a whole."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {NotificationStatus.DELIVERED, NotificationStatus.FAILED, NotificationStatus.SKIPPED}
)

# Statuses from which a notification may move to the key status.
STATUS_PREDECESSORS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset(),
    NotificationStatus.SKIPPED: frozenset(),
    NotificationStatus.IN_PROGRESS: frozenset({NotificationStatus.PENDING}),
    NotificationStatus.DELIVERED: frozenset(
        {NotificationStatus.PENDING, NotificationStatus.IN_PROGRESS}
    ),
    NotificationStatus.FAILED: frozenset(
        {NotificationStatus.PENDING, NotificationStatus.IN_PROGRESS}
    ),
}


def can_transition(current: NotificationStatus, new: NotificationStatus) -> bool:
    """Return ``True`` when moving from ``current`` to ``new`` goes forward."""

    return current in STATUS_PREDECESSORS[new]


def sort_channels(channels: Iterable[DeliveryChannel]) -> tuple[DeliveryChannel, ...]:
    """Return ``channels`` deduplicated and in declaration order."""

    wanted = {DeliveryChannel(channel) for channel in channels}
    return tuple(channel for channel in DeliveryChannel if channel in wanted)


@dataclass
class Notification:
    """Information message delivered to a specific user."""

    id: int | None
    user_id: int
    notification_type: NotificationType
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    requested_channels: tuple[DeliveryChannel, ...] = ()
    channels: tuple[DeliveryChannel, ...] = ()
    status: NotificationStatus = NotificationStatus.PENDING
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    read_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class NotificationRequest:
    """Submission describing a notification that should be delivered."""

    user_id: int
    notification_type: NotificationType
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    channels: tuple[DeliveryChannel, ...] = tuple(DeliveryChannel)
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    """What the submitter learns right after a dispatch call."""

    notification_id: int
    status: NotificationStatus
    channels: tuple[DeliveryChannel, ...]

    @property
    def skipped(self) -> bool:
        return self.status is NotificationStatus.SKIPPED


__all__ = [
    "ALL_CHANNELS",
    "DeliveryChannel",
    "DispatchResult",
    "Notification",
    "NotificationPriority",
    "NotificationRequest",
    "NotificationStatus",
    "NotificationType",
    "STATUS_PREDECESSORS",
    "can_transition",
    "sort_channels",
]
