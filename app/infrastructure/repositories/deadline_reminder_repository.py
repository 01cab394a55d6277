"""Durable bookkeeping of deadline reminders that already fired."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.domain.entities import DeadlineReminder
from app.infrastructure.models import DeadlineReminderModel
from app.utils import ensure_app_naive_datetime, ensure_app_timezone, now_in_app_timezone

from .base import store_errors

logger = logging.getLogger(__name__)


class DeadlineReminderRepository:
    """Record which (task, due date, offset) reminders were handled."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def has_fired(self, task_id: int, due_at: datetime, offset_minutes: int) -> bool:
        with store_errors(self.session, "check deadline reminder"):
            model = self._query(task_id, due_at, offset_minutes).one_or_none()
        return model is not None

    def claim(
        self,
        task_id: int,
        due_at: datetime,
        offset_minutes: int,
        *,
        superseded: bool = False,
    ) -> bool:
        """Insert the reminder record; ``False`` means another scan already owns it."""

        model = DeadlineReminderModel(
            task_id=task_id,
            due_at=ensure_app_naive_datetime(due_at),
            offset_minutes=offset_minutes,
            superseded=superseded,
            fired_at=ensure_app_naive_datetime(now_in_app_timezone()),
        )
        with store_errors(self.session, "claim deadline reminder"):
            try:
                self.session.add(model)
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                logger.debug(
                    "Reminder for task %s offset %s min already recorded", task_id, offset_minutes
                )
                return False
        return True

    def reclaim_stale(
        self, task_id: int, due_at: datetime, offset_minutes: int, *, claimed_before: datetime
    ) -> bool:
        """Take over a claim that never got its notification, e.g. after a crash.

        Only a non-superseded claim without ``notification_id`` made before
        ``claimed_before`` qualifies; its claim time is refreshed so that a
        concurrent scan cannot take it over as well.
        """

        with store_errors(self.session, "reclaim deadline reminder"):
            updated = (
                self._query(task_id, due_at, offset_minutes)
                .filter(
                    DeadlineReminderModel.notification_id.is_(None),
                    DeadlineReminderModel.superseded.is_(False),
                    DeadlineReminderModel.fired_at < ensure_app_naive_datetime(claimed_before),
                )
                .update(
                    {DeadlineReminderModel.fired_at: ensure_app_naive_datetime(now_in_app_timezone())},
                    synchronize_session=False,
                )
            )
            self.session.commit()
        return updated == 1

    def release(self, task_id: int, due_at: datetime, offset_minutes: int) -> None:
        """Forget a claimed reminder so that a later scan fires it again."""

        with store_errors(self.session, "release deadline reminder"):
            self._query(task_id, due_at, offset_minutes).delete(synchronize_session=False)
            self.session.commit()

    def attach_notification(
        self, task_id: int, due_at: datetime, offset_minutes: int, notification_id: int
    ) -> None:
        with store_errors(self.session, "attach reminder notification"):
            self._query(task_id, due_at, offset_minutes).update(
                {DeadlineReminderModel.notification_id: notification_id},
                synchronize_session=False,
            )
            self.session.commit()

    def list_for_task(self, task_id: int) -> Sequence[DeadlineReminder]:
        with store_errors(self.session, "list deadline reminders"):
            models = (
                self.session.query(DeadlineReminderModel)
                .filter(DeadlineReminderModel.task_id == task_id)
                .order_by(DeadlineReminderModel.offset_minutes.desc())
                .all()
            )
        return [
            DeadlineReminder(
                task_id=model.task_id,
                due_at=ensure_app_timezone(model.due_at),
                offset_minutes=model.offset_minutes,
                notification_id=model.notification_id,
                superseded=bool(model.superseded),
                fired_at=ensure_app_timezone(model.fired_at),
            )
            for model in models
        ]

    def _query(self, task_id: int, due_at: datetime, offset_minutes: int):
        return self.session.query(DeadlineReminderModel).filter(
            DeadlineReminderModel.task_id == task_id,
            DeadlineReminderModel.due_at == ensure_app_naive_datetime(due_at),
            DeadlineReminderModel.offset_minutes == offset_minutes,
        )


__all__ = ["DeadlineReminderRepository"]
