"""Use case for retrieving a notification with its delivery progress."""

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.domain.entities import ChannelAttempt, Notification
from app.infrastructure.repositories import ChannelAttemptRepository, NotificationRepository


@dataclass(frozen=True)
class NotificationDetail:
    notification: Notification
    attempts: tuple[ChannelAttempt, ...]


def get_notification(session: Session, notification_id: int) -> NotificationDetail:
    """Return the notification and its channel attempts or raise if it does not exist."""

    notification = NotificationRepository(session).get(notification_id)
    if notification is None:
        raise LookupError("Notification not found")
    attempts = ChannelAttemptRepository(session).list_for_notification(notification_id)
    return NotificationDetail(notification=notification, attempts=tuple(attempts))
