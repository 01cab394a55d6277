"""Periodic scan emitting reminders ahead of task deadlines."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, sessionmaker

from app.domain.entities import (
    DispatchResult,
    NotificationPriority,
    NotificationRequest,
    NotificationType,
    UpcomingDeadline,
)
from app.domain.errors import DispatchError, NotificationError
from app.infrastructure.database import session_scope
from app.infrastructure.repositories import DeadlineReminderRepository, TaskRepository
from app.utils import now_in_app_timezone

logger = logging.getLogger(__name__)

DEFAULT_OFFSETS_MINUTES = (24 * 60, 60)


class Dispatcher(Protocol):
    def dispatch(self, request: NotificationRequest) -> DispatchResult: ...


def _describe_offset(offset_minutes: int) -> str:
    if offset_minutes % 60 == 0:
        hours = offset_minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{offset_minutes} minutes"


def build_reminder_request(deadline: UpcomingDeadline, offset_minutes: int) -> NotificationRequest:
    """Create the DEADLINE_REMINDER request for ``deadline`` at ``offset_minutes``."""

    assert deadline.assignee_id is not None
    lead = _describe_offset(offset_minutes)
    title = deadline.title or f"Task {deadline.task_id}"
    return NotificationRequest(
        user_id=deadline.assignee_id,
        notification_type=NotificationType.DEADLINE_REMINDER,
        title=f"Deadline in {lead}: {title}",
        message=f"'{title}' is due at {deadline.due_at.isoformat()}.",
        priority=NotificationPriority.HIGH if offset_minutes <= 60 else NotificationPriority.MEDIUM,
        payload={
            "task_id": deadline.task_id,
            "due_at": deadline.due_at.isoformat(),
            "offset_minutes": offset_minutes,
        },
    )


class DeadlineTrigger:
    """Fire each reminder offset of a task deadline at most once.

    When a scan finds several offsets already due (a task created 30 minutes
    before it is due, or a scan gap) only the closest one fires; the others are
    recorded as superseded. Fired offsets are stored, so restarting the scan
    never repeats a reminder. A claim left without a notification for longer
    than ``claim_grace`` seconds (the process died between claiming and
    dispatching) is dispatched by a later scan.
    """

    JOB_ID = "deadline_scan"

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        session_factory: sessionmaker[Session] | None = None,
        offsets_minutes: Iterable[int] = DEFAULT_OFFSETS_MINUTES,
        interval: float = 60.0,
        claim_grace: float = 300.0,
        clock: Callable[[], datetime] = now_in_app_timezone,
    ) -> None:
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._offsets = tuple(sorted({int(offset) for offset in offsets_minutes}))
        if not self._offsets or self._offsets[0] <= 0:
            raise ValueError("Reminder offsets must be positive minutes")
        self._interval = interval
        self._claim_grace = timedelta(seconds=claim_grace)
        self._clock = clock
        self._scheduler: BackgroundScheduler | None = None

    @property
    def offsets_minutes(self) -> tuple[int, ...]:
        return self._offsets

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self._offsets[-1])

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def scan(self, now: datetime | None = None) -> list[DispatchResult]:
        """Run one pass and return the reminders dispatched by it."""

        now = now or self._clock()
        results: list[DispatchResult] = []
        with session_scope(self._session_factory) as session:
            deadlines = TaskRepository(session).list_upcoming_deadlines(self.window, now=now)
            reminders = DeadlineReminderRepository(session)
            for deadline in deadlines:
                if deadline.assignee_id is None:
                    continue
                due_offsets = [
                    offset
                    for offset in self._offsets
                    if now >= deadline.due_at - timedelta(minutes=offset)
                ]
                if not due_offsets:
                    continue
                try:
                    result = self._fire(reminders, deadline, due_offsets)
                except DispatchError as exc:
                    logger.error(
                        "Reminder for task %s not dispatched, retrying on next scan: %s",
                        deadline.task_id,
                        exc,
                    )
                    continue
                if result is not None:
                    results.append(result)
        if results:
            logger.info("Deadline scan dispatched %s reminder(s)", len(results))
        return results

    def _fire(
        self,
        reminders: DeadlineReminderRepository,
        deadline: UpcomingDeadline,
        due_offsets: list[int],
    ) -> DispatchResult | None:
        closest, *looser = due_offsets
        if reminders.has_fired(deadline.task_id, deadline.due_at, closest):
            claimed_before = now_in_app_timezone() - self._claim_grace
            if not reminders.reclaim_stale(
                deadline.task_id, deadline.due_at, closest, claimed_before=claimed_before
            ):
                return None
            logger.warning(
                "Reminder for task %s (%s before due) was claimed but never sent; sending it now",
                deadline.task_id,
                _describe_offset(closest),
            )
        else:
            for offset in looser:
                reminders.claim(deadline.task_id, deadline.due_at, offset, superseded=True)
            if not reminders.claim(deadline.task_id, deadline.due_at, closest):
                return None

        try:
            result = self._dispatcher.dispatch(build_reminder_request(deadline, closest))
        except DispatchError:
            reminders.release(deadline.task_id, deadline.due_at, closest)
            raise
        reminders.attach_notification(
            deadline.task_id, deadline.due_at, closest, result.notification_id
        )
        logger.info(
            "Reminder %s for task %s (%s before due) dispatched",
            result.notification_id,
            deadline.task_id,
            _describe_offset(closest),
        )
        return result

    def start(self) -> None:
        """Run :meth:`scan` now and then every ``interval`` seconds in the background."""

        if self.running:
            return
        scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        scheduler.add_job(
            self._run_scan,
            trigger=IntervalTrigger(seconds=self._interval),
            id=self.JOB_ID,
            name="Scan upcoming task deadlines",
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Deadline trigger started (every %ss, offsets %s min)", self._interval, self._offsets
        )

    def stop(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Deadline trigger stopped")

    def _run_scan(self) -> None:
        try:
            self.scan()
        except NotificationError as exc:
            logger.error("Deadline scan failed: %s", exc)
        except Exception:
            logger.exception("Deadline scan crashed; retrying on next tick")


__all__ = ["DEFAULT_OFFSETS_MINUTES", "DeadlineTrigger", "build_reminder_request"]
