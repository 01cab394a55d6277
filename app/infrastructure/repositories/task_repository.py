"""Read-only access to tasks with upcoming deadlines."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.domain.entities import UpcomingDeadline
from app.infrastructure.models import TaskModel
from app.utils import ensure_app_naive_datetime, ensure_app_timezone, now_in_app_timezone

from .base import store_errors


class TaskRepository:
    """Task source consumed by the deadline reminder scan."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_upcoming_deadlines(
        self, window: timedelta, *, now: datetime | None = None
    ) -> Sequence[UpcomingDeadline]:
        """Return open tasks due between ``now`` and ``now + window``."""

        start = now or now_in_app_timezone()
        end = start + window
        query = (
            self.session.query(TaskModel)
            .filter(TaskModel.completed.is_(False))
            .filter(TaskModel.due_at.is_not(None))
            .filter(TaskModel.due_at >= ensure_app_naive_datetime(start))
            .filter(TaskModel.due_at <= ensure_app_naive_datetime(end))
            .order_by(TaskModel.due_at, TaskModel.id)
        )
        with store_errors(self.session, "list upcoming deadlines"):
            models = query.all()
        return [
            UpcomingDeadline(
                task_id=model.id,
                due_at=ensure_app_timezone(model.due_at),
                assignee_id=model.assignee_id,
                title=model.title,
            )
            for model in models
        ]


__all__ = ["TaskRepository"]
