"""Assemble the dispatch engine, its scheduler and the deadline trigger."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings, get_settings
from app.infrastructure.channels import (
    ChannelRegistry,
    EmailChannelSender,
    MailTransport,
    RealtimeChannelSender,
    RealtimePublisher,
    user_email_lookup,
)
from app.infrastructure.email import SendGridMailTransport
from app.infrastructure.notifications import notification_publisher

from .deadline_trigger import DeadlineTrigger
from .dispatch_engine import DispatchEngine
from .preference_resolver import PreferenceResolver
from .retry_scheduler import RetryPolicy, RetryScheduler

logger = logging.getLogger(__name__)


@dataclass
class NotificationRuntime:
    """Long-lived services started with the application."""

    engine: DispatchEngine
    deadline_trigger: DeadlineTrigger
    run_deadline_scan: bool = True

    def start(self) -> None:
        self.engine.start()
        if self.run_deadline_scan:
            self.deadline_trigger.start()

    def stop(self) -> None:
        self.deadline_trigger.stop()
        self.engine.shutdown()
        logger.info("Notification runtime stopped")


def build_runtime(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    mail_transport: MailTransport | None = None,
    publisher: RealtimePublisher | None = None,
) -> NotificationRuntime:
    """Wire the runtime from ``settings``; collaborators can be swapped for tests."""

    settings = settings or get_settings()
    registry = ChannelRegistry(
        [
            EmailChannelSender(
                mail_transport or SendGridMailTransport(),
                user_email_lookup(session_factory),
            ),
            RealtimeChannelSender(publisher or notification_publisher),
        ]
    )
    scheduler = RetryScheduler(
        RetryPolicy.from_settings(settings), worker_count=settings.dispatch_worker_count
    )
    engine = DispatchEngine(
        registry=registry,
        scheduler=scheduler,
        preference_resolver=PreferenceResolver(session_factory),
        session_factory=session_factory,
        send_timeout=settings.channel_send_timeout_seconds,
        send_workers=settings.dispatch_worker_count,
    )
    trigger = DeadlineTrigger(
        engine,
        session_factory=session_factory,
        offsets_minutes=settings.deadline_reminder_offsets_minutes,
        interval=settings.deadline_scan_interval_seconds,
    )
    return NotificationRuntime(
        engine=engine,
        deadline_trigger=trigger,
        run_deadline_scan=settings.deadline_scan_enabled,
    )


__all__ = ["NotificationRuntime", "build_runtime"]
