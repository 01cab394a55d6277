"""Email channel: durable, retried delivery through the mail transport."""

from __future__ import annotations

import logging
from html import escape
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from app.domain.entities import DeliveryChannel, Notification, NotificationPriority
from app.domain.errors import PermanentChannelError, StoreUnavailable, TransientChannelError
from app.infrastructure.database import session_scope
from app.infrastructure.repositories import UserRepository

from .base import ChannelPolicy, ChannelSender, MailTransport, SendReceipt

logger = logging.getLogger(__name__)

AddressLookup = Callable[[int], str | None]

_SUBJECT_PREFIXES = {
    NotificationPriority.HIGH: "[High] ",
    NotificationPriority.URGENT: "[Urgent] ",
}


def user_email_lookup(session_factory: sessionmaker[Session] | None = None) -> AddressLookup:
    """Build a lookup that reads recipient addresses from the user directory."""

    def lookup(user_id: int) -> str | None:
        with session_scope(session_factory) as session:
            user = UserRepository(session).get(user_id)
        if user is None or not user.is_active:
            return None
        return user.email

    return lookup


def render_email(notification: Notification) -> tuple[str, str]:
    """Return the subject and HTML body used for ``notification``."""

    subject = _SUBJECT_PREFIXES.get(notification.priority, "") + notification.title
    paragraphs = [
        f"<p>{escape(line)}</p>" for line in notification.message.splitlines() if line.strip()
    ]
    html_content = "".join(
        (
            f"<h2>{escape(notification.title)}</h2>",
            "".join(paragraphs) or "<p></p>",
            f"<p><small>{escape(notification.notification_type.value.replace('_', ' ').title())}"
            f" · priority {escape(notification.priority.value.lower())}</small></p>",
        )
    )
    return subject, html_content


class EmailChannelSender(ChannelSender):
    """Render a notification and hand it to the mail transport."""

    channel = DeliveryChannel.EMAIL
    policy = ChannelPolicy(durable=True, retryable=True)

    def __init__(self, transport: MailTransport, address_lookup: AddressLookup) -> None:
        self._transport = transport
        self._address_lookup = address_lookup

    def send(self, notification: Notification) -> SendReceipt:
        try:
            address = self._address_lookup(notification.user_id)
        except StoreUnavailable as exc:
            raise TransientChannelError(f"Recipient directory unavailable: {exc}") from exc
        if not address:
            raise PermanentChannelError(
                f"No email address on file for user {notification.user_id}"
            )

        subject, body = render_email(notification)
        self._transport.deliver(address, subject, body)
        logger.info("Notification %s emailed to user %s", notification.id, notification.user_id)
        return SendReceipt(channel=self.channel, recipients=1)


__all__ = ["AddressLookup", "EmailChannelSender", "render_email", "user_email_lookup"]
