"""Delayed re-submission of channel attempts with exponential backoff.

Every (notification, channel) pair moves through
``PENDING -> DELIVERED | TRANSIENT_FAILURE | PERMANENT_FAILURE``. The scheduler
keeps a heap of attempts keyed by pair and fire time, hands due attempts to a
worker pool and decides, from each attempt's report, whether the pair is done,
has failed for good or needs another attempt after a backoff delay.

At most one attempt per pair is scheduled or running at any time. An attempt
whose send outlived its timeout keeps the pair busy until the send returns;
a retry that comes due meanwhile is deferred.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Protocol

from app.config import Settings
from app.domain.entities import AttemptState, DeliveryChannel
from app.domain.errors import StoreUnavailable
from app.utils import now_in_app_timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class AttemptKey:
    """Identity of a channel attempt."""

    notification_id: int
    channel: DeliveryChannel

    def __str__(self) -> str:
        return f"{self.notification_id}/{self.channel.value}"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    With the defaults the attempts of a failing pair fire at 0, +5 s, +25 s and
    +125 s; a transient failure of the fourth attempt is final.
    """

    base_delay: float = 5.0
    backoff_factor: float = 5.0
    max_attempts: int = 4

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay=settings.retry_base_delay_seconds,
            backoff_factor=settings.retry_backoff_factor,
            max_attempts=settings.retry_max_attempts,
        )

    def delay_after(self, attempt_number: int) -> float:
        """Seconds to wait after failed attempt ``attempt_number`` before the next one."""

        if attempt_number < 1:
            raise ValueError("attempt_number starts at 1")
        return self.base_delay * self.backoff_factor ** (attempt_number - 1)

    def allows_retry_after(self, attempt_number: int) -> bool:
        return attempt_number < self.max_attempts

    def delays(self) -> list[float]:
        """Delay preceding each attempt, the first one being immediate."""

        return [0.0] + [self.delay_after(n) for n in range(1, self.max_attempts)]


@dataclass(frozen=True)
class AttemptReport:
    """What a single attempt produced, as seen by the scheduler."""

    state: AttemptState | None
    error: str | None = None
    detail: str | None = None
    retryable: bool = True
    outstanding: Future | None = field(default=None, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.state is None

    @classmethod
    def delivered(cls, detail: str | None = None) -> "AttemptReport":
        return cls(AttemptState.DELIVERED, detail=detail)

    @classmethod
    def transient(
        cls, error: str, *, retryable: bool = True, outstanding: Future | None = None
    ) -> "AttemptReport":
        return cls(
            AttemptState.TRANSIENT_FAILURE,
            error=error,
            retryable=retryable,
            outstanding=outstanding,
        )

    @classmethod
    def permanent(cls, error: str) -> "AttemptReport":
        return cls(AttemptState.PERMANENT_FAILURE, error=error, retryable=False)

    @classmethod
    def aborted(cls, reason: str) -> "AttemptReport":
        return cls(None, detail=reason)


AttemptHandler = Callable[[AttemptKey, int], AttemptReport]


class AttemptListener(Protocol):
    """Receives the state transitions decided by the scheduler."""

    def on_delivered(self, key: AttemptKey, attempt_number: int, report: AttemptReport) -> None: ...

    def on_retry_scheduled(
        self,
        key: AttemptKey,
        attempt_number: int,
        delay: float,
        next_attempt_at: datetime,
        report: AttemptReport,
    ) -> None: ...

    def on_failed(
        self, key: AttemptKey, attempt_number: int, report: AttemptReport, *, exhausted: bool
    ) -> None: ...


@dataclass(order=True)
class _Entry:
    fire_at: float
    sequence: int
    key: AttemptKey = field(compare=False)
    attempt_number: int = field(compare=False)
    # Set when the attempt already ran and only its final outcome is left to record.
    report: AttemptReport | None = field(default=None, compare=False)
    record_tries: int = field(default=0, compare=False)


class RetryScheduler:
    """Run channel attempts on a worker pool, re-queuing transient failures."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        worker_count: int = 8,
        busy_defer: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._worker_count = worker_count
        self._busy_defer = busy_defer
        self._clock = clock
        self._handler: AttemptHandler | None = None
        self._listener: AttemptListener | None = None

        self._cond = threading.Condition()
        self._heap: list[_Entry] = []
        self._scheduled: dict[AttemptKey, _Entry] = {}
        self._in_flight: set[AttemptKey] = set()
        self._running = 0
        self._sequence = itertools.count()
        self._stopping = False
        self._timer: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    def bind(self, handler: AttemptHandler, listener: AttemptListener) -> None:
        """Set the callable performing attempts and the receiver of transitions."""

        self._handler = handler
        self._listener = listener

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    def start(self) -> None:
        if self._handler is None or self._listener is None:
            raise RuntimeError("RetryScheduler.bind() must be called before start()")
        with self._cond:
            if self.running:
                return
            self._stopping = False
            self._executor = ThreadPoolExecutor(
                max_workers=self._worker_count, thread_name_prefix="channel-attempt"
            )
            self._timer = threading.Thread(
                target=self._run_timer, name="retry-scheduler", daemon=True
            )
            self._timer.start()
        logger.info(
            "Retry scheduler started (%s workers, max %s attempts)",
            self._worker_count,
            self.policy.max_attempts,
        )

    def shutdown(self, *, wait: bool = True, timeout: float | None = None) -> None:
        """Stop firing attempts. Scheduled retries are dropped; their state stays in the store."""

        with self._cond:
            self._stopping = True
            dropped = len(self._scheduled)
            self._heap.clear()
            self._scheduled.clear()
            self._cond.notify_all()
        if self._timer is not None:
            self._timer.join(timeout)
            self._timer = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        if dropped:
            logger.info("Retry scheduler stopped with %s scheduled attempts pending", dropped)

    def submit(self, key: AttemptKey, *, attempt_number: int = 1, delay: float = 0.0) -> bool:
        """Schedule ``attempt_number`` of ``key`` after ``delay`` seconds.

        Returns ``False`` when an attempt for ``key`` is already scheduled or running.
        """

        with self._cond:
            if self._stopping:
                return False
            if key in self._scheduled or key in self._in_flight:
                logger.debug("Attempt for %s already queued or in flight", key)
                return False
            self._push(key, attempt_number, delay)
            return True

    def is_busy(self, key: AttemptKey) -> bool:
        with self._cond:
            return key in self._scheduled or key in self._in_flight

    def pending_count(self) -> int:
        with self._cond:
            return len(self._scheduled)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is scheduled, running or in flight."""

        with self._cond:
            return self._cond.wait_for(
                lambda: not self._scheduled and not self._in_flight and self._running == 0,
                timeout,
            )

    def _push(
        self,
        key: AttemptKey,
        attempt_number: int,
        delay: float,
        *,
        report: AttemptReport | None = None,
        record_tries: int = 0,
    ) -> None:
        entry = _Entry(
            fire_at=self._clock() + max(0.0, delay),
            sequence=next(self._sequence),
            key=key,
            attempt_number=attempt_number,
            report=report,
            record_tries=record_tries,
        )
        self._scheduled[key] = entry
        heapq.heappush(self._heap, entry)
        self._cond.notify_all()

    def _run_timer(self) -> None:
        with self._cond:
            while not self._stopping:
                if not self._heap:
                    self._cond.wait()
                    continue
                entry = self._heap[0]
                remaining = entry.fire_at - self._clock()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue
                heapq.heappop(self._heap)
                if self._scheduled.get(entry.key) is not entry:
                    continue
                if entry.key in self._in_flight:
                    entry.fire_at = self._clock() + self._busy_defer
                    entry.sequence = next(self._sequence)
                    heapq.heappush(self._heap, entry)
                    continue
                del self._scheduled[entry.key]
                self._in_flight.add(entry.key)
                self._running += 1
                assert self._executor is not None
                self._executor.submit(self._execute, entry)

    def _execute(self, entry: _Entry) -> None:
        key, attempt_number = entry.key, entry.attempt_number
        if entry.report is not None:
            try:
                self._finish(key, attempt_number, entry.report, tries=entry.record_tries)
            finally:
                with self._cond:
                    self._in_flight.discard(key)
                    self._running -= 1
                    self._cond.notify_all()
            return

        report: AttemptReport | None = None
        try:
            assert self._handler is not None
            try:
                report = self._handler(key, attempt_number)
            except Exception as exc:
                logger.exception("Attempt %s of %s raised unexpectedly", attempt_number, key)
                report = AttemptReport.transient(f"Unexpected error: {exc}")
            self._release(key, report.outstanding)
            self._advance(key, attempt_number, report)
        finally:
            with self._cond:
                if report is None:
                    self._in_flight.discard(key)
                self._running -= 1
                self._cond.notify_all()

    def _release(self, key: AttemptKey, outstanding: Future | None) -> None:
        if outstanding is None or outstanding.done():
            with self._cond:
                self._in_flight.discard(key)
                self._cond.notify_all()
            return

        def _on_done(_: Future) -> None:
            with self._cond:
                self._in_flight.discard(key)
                self._cond.notify_all()

        # The timed-out send is still running; the pair stays busy until it returns.
        outstanding.add_done_callback(_on_done)

    def _advance(self, key: AttemptKey, attempt_number: int, report: AttemptReport) -> None:
        assert self._listener is not None
        if report.cancelled:
            logger.info("Attempt %s of %s aborted: %s", attempt_number, key, report.detail)
            return
        if (
            report.state is AttemptState.TRANSIENT_FAILURE
            and report.retryable
            and self.policy.allows_retry_after(attempt_number)
        ):
            self._retry(key, attempt_number, report)
            return
        self._finish(key, attempt_number, report)

    def _retry(self, key: AttemptKey, attempt_number: int, report: AttemptReport) -> None:
        """Record a transient failure and queue the next attempt, even if recording fails."""

        assert self._listener is not None
        delay = self.policy.delay_after(attempt_number)
        next_attempt_at = now_in_app_timezone() + timedelta(seconds=delay)
        try:
            self._listener.on_retry_scheduled(key, attempt_number, delay, next_attempt_at, report)
        except StoreUnavailable as exc:
            logger.warning(
                "Could not record transient failure of attempt %s of %s: %s",
                attempt_number,
                key,
                exc,
            )
        except Exception:
            logger.exception("Recording the outcome of attempt %s of %s failed", attempt_number, key)
        with self._cond:
            if not self._stopping:
                self._push(key, attempt_number + 1, delay)
        logger.warning(
            "Attempt %s of %s failed (%s); retrying in %.1fs",
            attempt_number,
            key,
            report.error,
            delay,
        )

    def _finish(
        self, key: AttemptKey, attempt_number: int, report: AttemptReport, *, tries: int = 0
    ) -> None:
        """Record a final outcome; a store failure re-queues the recording with backoff."""

        assert self._listener is not None
        try:
            if report.state is AttemptState.DELIVERED:
                self._listener.on_delivered(key, attempt_number, report)
            else:
                exhausted = report.state is AttemptState.TRANSIENT_FAILURE and report.retryable
                self._listener.on_failed(key, attempt_number, report, exhausted=exhausted)
        except StoreUnavailable as exc:
            delay = self.policy.delay_after(min(tries + 1, max(1, self.policy.max_attempts - 1)))
            logger.warning(
                "Could not record outcome of attempt %s of %s (%s); retrying in %.1fs",
                attempt_number,
                key,
                exc,
                delay,
            )
            with self._cond:
                if not self._stopping:
                    self._push(key, attempt_number, delay, report=report, record_tries=tries + 1)
        except Exception:
            logger.exception("Recording the outcome of attempt %s of %s failed", attempt_number, key)


__all__ = [
    "AttemptHandler",
    "AttemptKey",
    "AttemptListener",
    "AttemptReport",
    "RetryPolicy",
    "RetryScheduler",
]
