"""Per-channel delivery progress of a notification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from .notification import DeliveryChannel, NotificationStatus


class AttemptState(str, Enum):
    """State machine of a single (notification, channel) pair."""

    PENDING = "PENDING"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    DELIVERED = "DELIVERED"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptState.DELIVERED, AttemptState.PERMANENT_FAILURE)


class AttemptOutcome(str, Enum):
    """Summarised result of a channel attempt as exposed to queries."""

    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


@dataclass
class ChannelAttempt:
    """Delivery bookkeeping for one channel of one notification."""

    notification_id: int
    channel: DeliveryChannel
    state: AttemptState = AttemptState.PENDING
    attempt_count: int = 0
    next_retry_at: datetime | None = None
    last_error: str | None = None
    detail: str | None = None
    updated_at: datetime | None = None

    @property
    def outcome(self) -> AttemptOutcome:
        if self.state is AttemptState.DELIVERED:
            return AttemptOutcome.DELIVERED
        if self.state is AttemptState.PERMANENT_FAILURE:
            return AttemptOutcome.FAILED
        return AttemptOutcome.PENDING


def aggregate_status(attempts: Iterable[ChannelAttempt]) -> NotificationStatus:
    """Derive the notification status from its channel attempts.

    One delivered channel is enough for the notification to count as delivered;
    it only fails once every channel has failed for good.
    """

    attempts = list(attempts)
    if not attempts:
        return NotificationStatus.SKIPPED
    states = [attempt.state for attempt in attempts]
    if AttemptState.DELIVERED in states:
        return NotificationStatus.DELIVERED
    if all(state is AttemptState.PERMANENT_FAILURE for state in states):
        return NotificationStatus.FAILED
    if any(attempt.attempt_count > 0 for attempt in attempts):
        return NotificationStatus.IN_PROGRESS
    return NotificationStatus.PENDING


__all__ = ["AttemptOutcome", "AttemptState", "ChannelAttempt", "aggregate_status"]
