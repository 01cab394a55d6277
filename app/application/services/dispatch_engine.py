"""Orchestrate delivery of notification requests across channels."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, TimeoutError as SendTimeout
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from app.domain.entities import (
    ALL_CHANNELS,
    AttemptState,
    DeliveryChannel,
    DispatchResult,
    Notification,
    NotificationPriority,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
    aggregate_status,
    can_transition,
    sort_channels,
)
from app.domain.errors import (
    DispatchError,
    PermanentChannelError,
    PreferenceLookupFailed,
    StoreUnavailable,
    TransientChannelError,
)
from app.infrastructure.channels import ChannelRegistry
from app.infrastructure.database import session_scope
from app.infrastructure.repositories import ChannelAttemptRepository, NotificationRepository
from app.utils import now_in_app_timezone

from .preference_resolver import PreferenceResolver
from .retry_scheduler import AttemptKey, AttemptReport, RetryScheduler

logger = logging.getLogger(__name__)

RETRIES_EXHAUSTED = "retries_exhausted"
INTERRUPTED = "Interrupted by restart"


class _KeyedLocks:
    """One lock per notification id, discarded when nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: int) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


class DispatchEngine:
    """Accept notification requests and drive every channel to a terminal state.

    ``dispatch`` records the notification before anything is sent and returns
    as soon as the channel attempts are queued; delivery progress is only
    observable through the store. Channel failures never surface to the
    submitter, store failures do (as :class:`DispatchError`).
    """

    def __init__(
        self,
        *,
        registry: ChannelRegistry,
        scheduler: RetryScheduler,
        preference_resolver: PreferenceResolver | None = None,
        session_factory: sessionmaker[Session] | None = None,
        send_timeout: float = 10.0,
        send_workers: int = 8,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._session_factory = session_factory
        self._preferences = preference_resolver or PreferenceResolver(session_factory)
        self._send_timeout = send_timeout
        self._send_workers = send_workers
        self._send_pool: ThreadPoolExecutor | None = None
        self._status_locks = _KeyedLocks()
        scheduler.bind(self.run_attempt, self)

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    def start(self, *, resume: bool = True) -> None:
        if self._send_pool is None:
            self._send_pool = ThreadPoolExecutor(
                max_workers=self._send_workers, thread_name_prefix="channel-send"
            )
        self._scheduler.start()
        if resume:
            self.resume_pending()

    def shutdown(self, *, wait: bool = True) -> None:
        self._scheduler.shutdown(wait=wait)
        if self._send_pool is not None:
            self._send_pool.shutdown(wait=wait)
            self._send_pool = None

    def dispatch(self, request: NotificationRequest) -> DispatchResult:
        """Record ``request`` and queue one attempt per effective channel."""

        requested = sort_channels(request.channels)
        enabled = self._enabled_channels(request.user_id, request.notification_type)
        effective = tuple(channel for channel in requested if channel in enabled)
        unsupported = [channel for channel in effective if channel not in self._registry.channels]
        if unsupported:
            logger.warning(
                "No sender registered for %s; skipping those channels",
                ", ".join(channel.value for channel in unsupported),
            )
            effective = tuple(channel for channel in effective if channel not in unsupported)

        status = NotificationStatus.PENDING if effective else NotificationStatus.SKIPPED
        notification = Notification(
            id=None,
            user_id=request.user_id,
            notification_type=NotificationType(request.notification_type),
            title=request.title,
            message=request.message,
            priority=NotificationPriority(request.priority),
            requested_channels=requested,
            channels=effective,
            status=status,
            payload=dict(request.payload),
            created_at=now_in_app_timezone(),
        )
        try:
            with session_scope(self._session_factory) as session:
                saved = NotificationRepository(session).save(notification)
        except StoreUnavailable as exc:
            raise DispatchError(f"Notification for user {request.user_id} not recorded: {exc}") from exc

        assert saved.id is not None
        if status is NotificationStatus.SKIPPED:
            logger.info(
                "Notification %s skipped: no enabled channel for user %s and type %s",
                saved.id,
                request.user_id,
                notification.notification_type.value,
            )
            return DispatchResult(notification_id=saved.id, status=status, channels=())

        for channel in effective:
            self._scheduler.submit(AttemptKey(saved.id, channel))
        logger.info(
            "Notification %s queued on %s",
            saved.id,
            ", ".join(channel.value for channel in effective),
        )
        return DispatchResult(notification_id=saved.id, status=status, channels=effective)

    def resume_pending(self) -> int:
        """Re-queue channel attempts left unfinished by a previous process.

        Only durable channels are resumed; an unfinished attempt on any other
        channel is failed, its audience being gone with the previous process.
        """

        with session_scope(self._session_factory) as session:
            unfinished = ChannelAttemptRepository(session).list_unfinished()
        now = now_in_app_timezone()
        resumed = 0
        for attempt in unfinished:
            key = AttemptKey(attempt.notification_id, attempt.channel)
            if not self._is_durable(attempt.channel):
                self.on_failed(
                    key,
                    attempt.attempt_count,
                    AttemptReport.transient(INTERRUPTED, retryable=False),
                    exhausted=False,
                )
                continue
            next_number = attempt.attempt_count + 1
            if next_number > self._scheduler.policy.max_attempts:
                self.on_failed(
                    key,
                    attempt.attempt_count,
                    AttemptReport.transient(attempt.last_error or "Interrupted attempt"),
                    exhausted=True,
                )
                continue
            delay = 0.0
            if attempt.next_retry_at is not None:
                delay = max(0.0, (attempt.next_retry_at - now).total_seconds())
            if self._scheduler.submit(key, attempt_number=next_number, delay=delay):
                resumed += 1
        if resumed:
            logger.info("Resumed %s unfinished channel attempts", resumed)
        return resumed

    def run_attempt(self, key: AttemptKey, attempt_number: int) -> AttemptReport:
        """Perform attempt ``attempt_number`` for ``key``; called by the scheduler."""

        with session_scope(self._session_factory) as session:
            notification = NotificationRepository(session).get(key.notification_id)
            if notification is None:
                return AttemptReport.aborted("notification deleted")
            started = ChannelAttemptRepository(session).begin_attempt(
                key.notification_id, key.channel, attempt_number
            )
        if started is None:
            return AttemptReport.aborted("attempt already recorded or channel finished")
        self._refresh_status(key.notification_id)

        sender = self._registry.get(key.channel)
        if self._send_pool is None:
            raise RuntimeError("DispatchEngine.start() must be called before attempts run")
        future = self._send_pool.submit(sender.send, notification)
        try:
            receipt = future.result(timeout=self._send_timeout)
        except SendTimeout:
            return AttemptReport.transient(
                f"Send timed out after {self._send_timeout:g}s",
                retryable=sender.policy.retryable,
                outstanding=future,
            )
        except TransientChannelError as exc:
            return AttemptReport.transient(exc.reason, retryable=sender.policy.retryable)
        except PermanentChannelError as exc:
            return AttemptReport.permanent(exc.reason)
        except Exception as exc:
            logger.exception("Sender for %s raised unexpectedly on %s", key.channel.value, key)
            return AttemptReport.transient(
                f"Unexpected sender error: {exc}", retryable=sender.policy.retryable
            )
        return AttemptReport.delivered(detail=receipt.detail)

    def on_delivered(self, key: AttemptKey, attempt_number: int, report: AttemptReport) -> None:
        self._record(
            key,
            state=AttemptState.DELIVERED,
            attempt_number=attempt_number,
            detail=report.detail,
        )
        logger.info("Notification %s delivered on %s", key.notification_id, key.channel.value)

    def on_retry_scheduled(
        self,
        key: AttemptKey,
        attempt_number: int,
        delay: float,
        next_attempt_at: datetime,
        report: AttemptReport,
    ) -> None:
        self._record(
            key,
            state=AttemptState.TRANSIENT_FAILURE,
            attempt_number=attempt_number,
            error=report.error,
            next_retry_at=next_attempt_at,
        )

    def on_failed(
        self, key: AttemptKey, attempt_number: int, report: AttemptReport, *, exhausted: bool
    ) -> None:
        self._record(
            key,
            state=AttemptState.PERMANENT_FAILURE,
            attempt_number=attempt_number,
            error=report.error,
            detail=RETRIES_EXHAUSTED if exhausted else None,
        )
        logger.error(
            "Notification %s failed on %s after %s attempt(s): %s",
            key.notification_id,
            key.channel.value,
            attempt_number,
            report.error,
        )

    def _is_durable(self, channel: DeliveryChannel) -> bool:
        if channel not in self._registry.channels:
            return False
        return self._registry.get(channel).policy.durable

    def _enabled_channels(
        self, user_id: int, notification_type: NotificationType
    ) -> frozenset[DeliveryChannel]:
        try:
            return self._preferences.enabled_channels(user_id, notification_type)
        except PreferenceLookupFailed as exc:
            logger.warning("%s; allowing every channel", exc)
            return ALL_CHANNELS

    def _record(
        self,
        key: AttemptKey,
        *,
        state: AttemptState,
        attempt_number: int,
        error: str | None = None,
        detail: str | None = None,
        next_retry_at: datetime | None = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            ChannelAttemptRepository(session).apply_outcome(
                key.notification_id,
                key.channel,
                state=state,
                attempt_number=attempt_number,
                error=error,
                detail=detail,
                next_retry_at=next_retry_at,
            )
        self._refresh_status(key.notification_id)

    def _refresh_status(self, notification_id: int) -> NotificationStatus | None:
        """Recompute the notification status from its attempts and store it if it moved forward."""

        with self._status_locks.hold(notification_id):
            with session_scope(self._session_factory) as session:
                repository = NotificationRepository(session)
                notification = repository.get(notification_id, include_deleted=True)
                if notification is None:
                    return None
                attempts = ChannelAttemptRepository(session).list_for_notification(notification_id)
                target = aggregate_status(attempts)
                if target is notification.status or not can_transition(notification.status, target):
                    return notification.status
                repository.update_status(notification_id, target)
        if target.is_terminal:
            logger.info("Notification %s is now %s", notification_id, target.value)
        return target


__all__ = ["DispatchEngine", "INTERRUPTED", "RETRIES_EXHAUSTED"]
