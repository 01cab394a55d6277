"""End-to-end behaviour of the dispatch engine over a real SQLite store."""

from __future__ import annotations

import threading
import time

import pytest
from sqlalchemy.exc import OperationalError

from app.application.services import INTERRUPTED, RETRIES_EXHAUSTED, AttemptKey, RetryPolicy
from app.domain.entities import (
    AttemptState,
    DeliveryChannel,
    NotificationPriority,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
)
from app.domain.errors import (
    DispatchError,
    PermanentChannelError,
    StoreUnavailable,
    TransientChannelError,
)
from app.infrastructure.channels import NO_SUBSCRIBER
from app.infrastructure.notifications import PublishOutcome
from app.infrastructure.repositories import (
    ChannelAttemptRepository,
    NotificationRepository,
    PreferenceRepository,
)

from conftest import AlwaysFailingTransport, FakeMailTransport, FakePublisher


def _request(**overrides) -> NotificationRequest:
    values = dict(
        user_id=7,
        notification_type=NotificationType.TASK_ASSIGNED,
        title="New task",
        message="You were assigned to 'Quarterly report'",
        priority=NotificationPriority.HIGH,
        channels=(DeliveryChannel.EMAIL, DeliveryChannel.REALTIME),
    )
    values.update(overrides)
    return NotificationRequest(**values)


def _status(session, notification_id: int) -> NotificationStatus:
    return NotificationRepository(session).get(notification_id, include_deleted=True).status


def _attempt(session, notification_id: int, channel: DeliveryChannel):
    return ChannelAttemptRepository(session).get(notification_id, channel)


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_delivers_on_every_requested_channel(make_engine, session, recipient) -> None:
    transport, publisher = FakeMailTransport(), FakePublisher()
    engine = make_engine(transport, publisher)

    result = engine.dispatch(_request())
    assert result.status is NotificationStatus.PENDING
    assert result.channels == (DeliveryChannel.EMAIL, DeliveryChannel.REALTIME)
    assert engine.scheduler.wait_idle(timeout=5)

    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED
    assert transport.sent[0][0] == "ada@example.com"
    assert transport.sent[0][1] == "[High] New task"
    assert publisher.published[0][0] == 7
    assert publisher.published[0][1]["data"]["id"] == result.notification_id
    for channel in result.channels:
        attempt = _attempt(session, result.notification_id, channel)
        assert attempt.state is AttemptState.DELIVERED
        assert attempt.attempt_count == 1


def test_disabled_channels_are_never_attempted(make_engine, session, recipient) -> None:
    PreferenceRepository(session).set(7, NotificationType.TASK_ASSIGNED, [DeliveryChannel.REALTIME])
    transport, publisher = FakeMailTransport(), FakePublisher()
    engine = make_engine(transport, publisher)

    result = engine.dispatch(_request())
    assert engine.scheduler.wait_idle(timeout=5)

    assert result.channels == (DeliveryChannel.REALTIME,)
    assert transport.calls == 0
    assert _attempt(session, result.notification_id, DeliveryChannel.EMAIL) is None
    notification = NotificationRepository(session).get(result.notification_id)
    assert notification.requested_channels == (DeliveryChannel.EMAIL, DeliveryChannel.REALTIME)
    assert notification.channels == (DeliveryChannel.REALTIME,)


def test_no_enabled_channel_skips_the_notification(make_engine, session, recipient) -> None:
    PreferenceRepository(session).set(7, NotificationType.COMMENT_MENTION, [])
    transport, publisher = FakeMailTransport(), FakePublisher()
    engine = make_engine(transport, publisher)

    result = engine.dispatch(_request(notification_type=NotificationType.COMMENT_MENTION))

    assert result.skipped
    assert result.channels == ()
    assert engine.scheduler.pending_count() == 0
    assert _status(session, result.notification_id) is NotificationStatus.SKIPPED
    assert transport.calls == 0 and publisher.published == []


def test_preference_change_applies_to_next_notification(make_engine, session, recipient) -> None:
    engine = make_engine()

    first = engine.dispatch(_request())
    PreferenceRepository(session).set(7, NotificationType.TASK_ASSIGNED, [DeliveryChannel.EMAIL])
    second = engine.dispatch(_request())

    assert first.channels == (DeliveryChannel.EMAIL, DeliveryChannel.REALTIME)
    assert second.channels == (DeliveryChannel.EMAIL,)


def test_failed_preference_lookup_allows_every_channel(
    make_engine, session, recipient, monkeypatch: pytest.MonkeyPatch, caplog
) -> None:
    def broken_get(self, user_id, notification_type):
        raise StoreUnavailable("get preference failed: disk I/O error")

    monkeypatch.setattr(PreferenceRepository, "_get_model", broken_get)
    engine = make_engine()

    with caplog.at_level("WARNING"):
        result = engine.dispatch(_request())

    assert result.channels == (DeliveryChannel.EMAIL, DeliveryChannel.REALTIME)
    assert "allowing every channel" in caplog.text


def test_transient_email_failures_exhaust_into_failed(make_engine, session, recipient) -> None:
    PreferenceRepository(session).set(7, NotificationType.TASK_ASSIGNED, [DeliveryChannel.EMAIL])
    transport, publisher = AlwaysFailingTransport(), FakePublisher()
    engine = make_engine(transport, publisher)

    result = engine.dispatch(_request())
    assert engine.scheduler.wait_idle(timeout=5)

    assert result.channels == (DeliveryChannel.EMAIL,)
    assert publisher.published == []
    assert transport.calls == 4
    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.PERMANENT_FAILURE
    assert attempt.attempt_count == 4
    assert attempt.detail == RETRIES_EXHAUSTED
    assert "503" in attempt.last_error
    assert _status(session, result.notification_id) is NotificationStatus.FAILED


def test_transient_failure_then_success_delivers(make_engine, session, recipient) -> None:
    transport = FakeMailTransport(failures=[TransientChannelError("429 rate limited")])
    engine = make_engine(transport)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.wait_idle(timeout=5)

    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.DELIVERED
    assert attempt.attempt_count == 2
    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED


def _fail_outcome_once(monkeypatch: pytest.MonkeyPatch, state: AttemptState) -> list[int]:
    """Make the first write of an outcome in ``state`` hit an unavailable store."""

    original = ChannelAttemptRepository.apply_outcome
    failed: list[int] = []

    def flaky_apply_outcome(self, notification_id, channel, **kwargs):
        if kwargs["state"] is state and not failed:
            failed.append(kwargs["attempt_number"])
            raise StoreUnavailable("apply channel attempt outcome failed: database is locked")
        return original(self, notification_id, channel, **kwargs)

    monkeypatch.setattr(ChannelAttemptRepository, "apply_outcome", flaky_apply_outcome)
    return failed


def test_unrecorded_transient_failure_still_retries(
    make_engine, session, recipient, monkeypatch: pytest.MonkeyPatch
) -> None:
    failed = _fail_outcome_once(monkeypatch, AttemptState.TRANSIENT_FAILURE)
    transport = FakeMailTransport(failures=[TransientChannelError("timeout")])
    engine = make_engine(transport)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.wait_idle(timeout=5)

    assert failed == [1]
    assert transport.calls == 2
    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.DELIVERED
    assert attempt.attempt_count == 2
    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED


def test_unrecorded_delivery_is_recorded_later_without_resending(
    make_engine, session, recipient, monkeypatch: pytest.MonkeyPatch
) -> None:
    failed = _fail_outcome_once(monkeypatch, AttemptState.DELIVERED)
    transport = FakeMailTransport()
    engine = make_engine(transport)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.wait_idle(timeout=5)

    assert failed == [1]
    assert transport.calls == 1
    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.DELIVERED
    assert attempt.attempt_count == 1
    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED


def test_unrecorded_permanent_failure_is_recorded_later(
    make_engine, session, recipient, monkeypatch: pytest.MonkeyPatch
) -> None:
    _fail_outcome_once(monkeypatch, AttemptState.PERMANENT_FAILURE)
    transport = FakeMailTransport(failures=[PermanentChannelError("invalid address")])
    engine = make_engine(transport)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.wait_idle(timeout=5)

    assert transport.calls == 1
    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.PERMANENT_FAILURE
    assert _status(session, result.notification_id) is NotificationStatus.FAILED


def test_permanent_failure_is_not_retried(make_engine, session, recipient) -> None:
    transport = FakeMailTransport(failures=[PermanentChannelError("invalid address")])
    engine = make_engine(transport)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.wait_idle(timeout=5)

    assert transport.calls == 1
    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.PERMANENT_FAILURE
    assert attempt.detail is None
    assert _status(session, result.notification_id) is NotificationStatus.FAILED


def test_delivered_channel_wins_over_failed_one(make_engine, session, recipient) -> None:
    transport = FakeMailTransport(failures=[PermanentChannelError("bounced")])
    engine = make_engine(transport, FakePublisher())

    result = engine.dispatch(_request())
    assert engine.scheduler.wait_idle(timeout=5)

    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED


def test_unknown_recipient_fails_email_permanently(make_engine, session) -> None:
    transport = FakeMailTransport()
    engine = make_engine(transport)

    result = engine.dispatch(_request(user_id=404, channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.wait_idle(timeout=5)

    assert transport.calls == 0
    assert _status(session, result.notification_id) is NotificationStatus.FAILED


def test_realtime_without_subscriber_counts_as_delivered(make_engine, session, recipient) -> None:
    publisher = FakePublisher(PublishOutcome.NO_SUBSCRIBER)
    engine = make_engine(FakeMailTransport(), publisher)

    result = engine.dispatch(_request(channels=(DeliveryChannel.REALTIME,)))
    assert engine.scheduler.wait_idle(timeout=5)

    attempt = _attempt(session, result.notification_id, DeliveryChannel.REALTIME)
    assert attempt.state is AttemptState.DELIVERED
    assert attempt.detail == NO_SUBSCRIBER
    assert len(publisher.published) == 1


def test_realtime_transient_failure_is_not_retried(make_engine, session, recipient) -> None:
    class BrokenPublisher(FakePublisher):
        def publish(self, user_id, payload):
            self.published.append((user_id, payload))
            raise TransientChannelError("Realtime event loop is not running")

    publisher = BrokenPublisher()
    engine = make_engine(FakeMailTransport(), publisher)

    result = engine.dispatch(_request(channels=(DeliveryChannel.REALTIME,)))
    assert engine.scheduler.wait_idle(timeout=5)

    assert len(publisher.published) == 1
    attempt = _attempt(session, result.notification_id, DeliveryChannel.REALTIME)
    assert attempt.state is AttemptState.PERMANENT_FAILURE
    assert attempt.attempt_count == 1


def test_slow_send_times_out_as_transient(make_engine, session, recipient) -> None:
    release = threading.Event()

    class SlowTransport(FakeMailTransport):
        def deliver(self, address, subject, body):
            with self._lock:
                self.calls += 1
                first = self.calls == 1
            if first:
                release.wait(5)
            self.sent.append((address, subject, body))

    transport = SlowTransport()
    engine = make_engine(transport, send_timeout=0.05)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert _wait_for(
        lambda: (_attempt(session, result.notification_id, DeliveryChannel.EMAIL).last_error or "")
        .startswith("Send timed out")
    )
    # The retry may not start while the timed out send is still running.
    time.sleep(0.1)
    assert transport.calls == 1
    release.set()
    assert engine.scheduler.wait_idle(timeout=5)

    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.DELIVERED
    assert attempt.attempt_count == 2


def test_deleting_a_notification_cancels_pending_retries(make_engine, session, recipient) -> None:
    transport = AlwaysFailingTransport()
    slow_policy = RetryPolicy(base_delay=0.2, backoff_factor=1.0, max_attempts=4)
    engine = make_engine(transport, policy=slow_policy)

    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert _wait_for(lambda: transport.calls == 1)
    assert NotificationRepository(session).delete(result.notification_id) is True
    assert engine.scheduler.wait_idle(timeout=5)

    assert transport.calls == 1
    attempt = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.attempt_count == 1
    assert attempt.state is AttemptState.TRANSIENT_FAILURE


def test_store_failure_on_dispatch_raises_dispatch_error(
    make_engine, recipient, monkeypatch: pytest.MonkeyPatch
) -> None:
    engine = make_engine()

    def broken_commit(self):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr("sqlalchemy.orm.Session.commit", broken_commit)

    with pytest.raises(DispatchError):
        engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert engine.scheduler.pending_count() == 0


def test_resume_pending_requeues_unfinished_attempts(make_engine, session, recipient) -> None:
    stopped = make_engine(start=False)
    # Record the notification without running anything, as if the process died.
    stopped.scheduler.shutdown()
    result = stopped.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    assert _attempt(session, result.notification_id, DeliveryChannel.EMAIL).attempt_count == 0

    transport = FakeMailTransport()
    engine = make_engine(transport, start=False)
    engine.start(resume=True)
    assert engine.scheduler.wait_idle(timeout=5)

    assert len(transport.sent) == 1
    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED


def test_resume_fails_unfinished_realtime_attempts(make_engine, session, recipient) -> None:
    stopped = make_engine(start=False)
    stopped.scheduler.shutdown()
    result = stopped.dispatch(_request())

    transport, publisher = FakeMailTransport(), FakePublisher()
    engine = make_engine(transport, publisher, start=False)
    engine.start(resume=True)
    assert engine.scheduler.wait_idle(timeout=5)

    assert publisher.published == []
    realtime = _attempt(session, result.notification_id, DeliveryChannel.REALTIME)
    assert realtime.state is AttemptState.PERMANENT_FAILURE
    assert realtime.last_error == INTERRUPTED
    email = _attempt(session, result.notification_id, DeliveryChannel.EMAIL)
    assert email.state is AttemptState.DELIVERED
    assert _status(session, result.notification_id) is NotificationStatus.DELIVERED


def test_resume_fails_attempts_that_used_every_try(make_engine, session, recipient) -> None:
    engine = make_engine(start=False)
    engine.scheduler.shutdown()
    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    attempts = ChannelAttemptRepository(session)
    attempts.begin_attempt(result.notification_id, DeliveryChannel.EMAIL, 4)

    resumed = make_engine(FakeMailTransport(), start=False)
    resumed.start(resume=True)
    assert resumed.scheduler.wait_idle(timeout=5)

    attempt = attempts.get(result.notification_id, DeliveryChannel.EMAIL)
    assert attempt.state is AttemptState.PERMANENT_FAILURE
    assert attempt.detail == RETRIES_EXHAUSTED
    assert _status(session, result.notification_id) is NotificationStatus.FAILED


def test_run_attempt_twice_sends_once(make_engine, session, recipient) -> None:
    transport = FakeMailTransport()
    engine = make_engine(transport, start=False)
    engine.scheduler.shutdown()
    result = engine.dispatch(_request(channels=(DeliveryChannel.EMAIL,)))
    engine.start(resume=False)
    key = AttemptKey(result.notification_id, DeliveryChannel.EMAIL)

    first = engine.run_attempt(key, 1)
    second = engine.run_attempt(key, 1)

    assert first.state is AttemptState.DELIVERED
    assert second.cancelled
    assert transport.calls == 1
