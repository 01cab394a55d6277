"""Realtime channel: best-effort push to connected subscribers."""

from __future__ import annotations

import logging

from app.domain.entities import DeliveryChannel, Notification
from app.infrastructure.notifications import PublishOutcome, serialize_notification

from .base import ChannelPolicy, ChannelSender, RealtimePublisher, SendReceipt

logger = logging.getLogger(__name__)

NO_SUBSCRIBER = "no_subscriber"


class RealtimeChannelSender(ChannelSender):
    """Publish to the recipient's topic; an empty topic still counts as sent."""

    channel = DeliveryChannel.REALTIME
    policy = ChannelPolicy(durable=False, retryable=False)

    def __init__(self, publisher: RealtimePublisher) -> None:
        self._publisher = publisher

    def send(self, notification: Notification) -> SendReceipt:
        message = {"type": "notification", "data": serialize_notification(notification)}
        outcome = self._publisher.publish(notification.user_id, message)
        if outcome == PublishOutcome.NO_SUBSCRIBER:
            logger.debug(
                "No realtime subscriber for user %s; notification %s dropped on this channel",
                notification.user_id,
                notification.id,
            )
            return SendReceipt(channel=self.channel, recipients=0, detail=NO_SUBSCRIBER)
        return SendReceipt(channel=self.channel, recipients=1)


__all__ = ["NO_SUBSCRIBER", "RealtimeChannelSender"]
