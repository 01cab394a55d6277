"""Tests for websocket subscriber bookkeeping and cross-thread publishing."""

from __future__ import annotations

import pytest
from anyio.from_thread import start_blocking_portal

from app.domain.entities import DeliveryChannel, Notification, NotificationType
from app.domain.errors import TransientChannelError
from app.infrastructure.channels import NO_SUBSCRIBER, RealtimeChannelSender
from app.infrastructure.notifications import (
    NotificationConnectionManager,
    NotificationPublisher,
    PublishOutcome,
)


class FakeSocket:
    def __init__(self, *, broken: bool = False) -> None:
        self.accepted = False
        self.broken = broken
        self.messages: list = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data) -> None:
        if self.broken:
            raise RuntimeError("connection closed")
        self.messages.append(data)


@pytest.fixture()
def manager():
    return NotificationConnectionManager()


def _notification() -> Notification:
    return Notification(
        id=11,
        user_id=7,
        notification_type=NotificationType.COMMENT_MENTION,
        title="You were mentioned",
        message="@ada please review",
        channels=(DeliveryChannel.REALTIME,),
    )


def test_publish_without_subscribers_reports_no_subscriber(manager) -> None:
    assert NotificationPublisher(manager).publish(7, {"type": "notification"}) is (
        PublishOutcome.NO_SUBSCRIBER
    )


def test_publish_reaches_every_connection_through_the_portal(manager) -> None:
    first, second, stranger = FakeSocket(), FakeSocket(), FakeSocket()
    publisher = NotificationPublisher(manager)

    with start_blocking_portal() as portal:
        manager.attach_portal(portal)
        portal.call(manager.connect, 7, first)
        portal.call(manager.connect, 7, second)
        portal.call(manager.connect, 8, stranger)

        outcome = publisher.publish(7, {"type": "notification", "data": {"id": 1}})

    assert first.accepted and second.accepted
    assert outcome is PublishOutcome.DELIVERED
    assert first.messages == second.messages == [{"type": "notification", "data": {"id": 1}}]
    assert stranger.messages == []


def test_failing_connection_is_pruned(manager) -> None:
    broken = FakeSocket(broken=True)
    publisher = NotificationPublisher(manager)
    manager.register(7, broken)

    with start_blocking_portal() as portal:
        manager.attach_portal(portal)
        outcome = publisher.publish(7, {"type": "notification"})

    assert outcome is PublishOutcome.NO_SUBSCRIBER
    assert manager.subscriber_count(7) == 0


def test_publish_without_event_loop_is_transient(manager) -> None:
    manager.register(7, FakeSocket())

    with pytest.raises(TransientChannelError):
        NotificationPublisher(manager).publish(7, {"type": "notification"})


def test_disconnect_removes_only_that_connection(manager) -> None:
    kept, dropped = FakeSocket(), FakeSocket()
    manager.register(7, kept)
    manager.register(7, dropped)

    manager.disconnect(7, dropped)
    manager.disconnect(9, dropped)

    assert manager.subscriber_count(7) == 1


def test_realtime_sender_marks_missing_subscriber() -> None:
    sender = RealtimeChannelSender(NotificationPublisher(NotificationConnectionManager()))

    receipt = sender.send(_notification())

    assert receipt.recipients == 0
    assert receipt.detail == NO_SUBSCRIBER


def test_realtime_sender_pushes_serialized_notification(manager) -> None:
    socket = FakeSocket()
    manager.register(7, socket)
    sender = RealtimeChannelSender(NotificationPublisher(manager))

    with start_blocking_portal() as portal:
        manager.attach_portal(portal)
        receipt = sender.send(_notification())

    assert receipt.detail is None
    message = socket.messages[0]
    assert message["type"] == "notification"
    assert message["data"]["id"] == 11
    assert message["data"]["type"] == "COMMENT_MENTION"
