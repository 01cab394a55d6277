"""Shared fixtures: a throwaway SQLite store and scripted channel fakes."""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

# Ensure the project root (which contains the ``app`` package) is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.application.services import DispatchEngine, RetryPolicy, RetryScheduler
from app.domain.entities import User
from app.domain.errors import TransientChannelError
from app.infrastructure.channels import (
    ChannelRegistry,
    EmailChannelSender,
    RealtimeChannelSender,
    user_email_lookup,
)
from app.infrastructure.database import build_engine, build_session_factory, initialize_database
from app.infrastructure.notifications import PublishOutcome
from app.infrastructure.repositories import UserRepository

FAST_POLICY = RetryPolicy(base_delay=0.01, backoff_factor=2.0, max_attempts=4)


class FakeMailTransport:
    """Mail transport that records deliveries and replays scripted failures."""

    def __init__(self, failures=None) -> None:
        self.failures = list(failures or [])
        self.sent: list[tuple[str, str, str]] = []
        self.calls = 0
        self._lock = threading.Lock()

    def deliver(self, address: str, subject: str, body: str) -> None:
        with self._lock:
            self.calls += 1
            failure = self.failures.pop(0) if self.failures else None
        if failure is not None:
            raise failure
        with self._lock:
            self.sent.append((address, subject, body))


class AlwaysFailingTransport(FakeMailTransport):
    def deliver(self, address: str, subject: str, body: str) -> None:
        with self._lock:
            self.calls += 1
        raise TransientChannelError("SendGrid responded with status 503")


class FakePublisher:
    def __init__(self, outcome: PublishOutcome = PublishOutcome.DELIVERED) -> None:
        self.outcome = outcome
        self.published: list[tuple[int, dict]] = []

    def publish(self, user_id: int, payload: dict) -> PublishOutcome:
        self.published.append((user_id, payload))
        return self.outcome


@pytest.fixture()
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'notifications.db'}")
    initialize_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture()
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def recipient(session):
    return UserRepository(session).create(
        User(id=7, name="Ada Lovelace", email="ada@example.com")
    )


@pytest.fixture()
def mail_transport():
    return FakeMailTransport()


@pytest.fixture()
def publisher():
    return FakePublisher()


@pytest.fixture()
def make_engine(session_factory):
    """Build a started dispatch engine over the test store; stopped on teardown."""

    engines: list[DispatchEngine] = []

    def factory(
        mail_transport=None,
        publisher=None,
        *,
        policy: RetryPolicy = FAST_POLICY,
        send_timeout: float = 2.0,
        start: bool = True,
    ) -> DispatchEngine:
        registry = ChannelRegistry(
            [
                EmailChannelSender(
                    mail_transport or FakeMailTransport(), user_email_lookup(session_factory)
                ),
                RealtimeChannelSender(publisher or FakePublisher()),
            ]
        )
        engine = DispatchEngine(
            registry=registry,
            scheduler=RetryScheduler(policy, worker_count=4),
            session_factory=session_factory,
            send_timeout=send_timeout,
            send_workers=4,
        )
        if start:
            engine.start()
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.shutdown()
