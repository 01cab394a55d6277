"""Domain entities used by the deadline reminder scan."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class UpcomingDeadline:
    """A task whose due date falls inside the scan window."""

    task_id: int
    due_at: datetime
    assignee_id: int | None = None
    title: str = ""


@dataclass(frozen=True)
class DeadlineReminder:
    """Durable record of a reminder offset that has already been handled."""

    task_id: int
    due_at: datetime
    offset_minutes: int
    notification_id: int | None = None
    superseded: bool = False
    fired_at: datetime | None = None

    @property
    def offset(self) -> timedelta:
        return timedelta(minutes=self.offset_minutes)


__all__ = ["DeadlineReminder", "UpcomingDeadline"]
