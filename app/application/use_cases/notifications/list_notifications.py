"""Use cases for querying a user's notifications."""

from collections.abc import Sequence

from sqlalchemy.orm import Session

from app.domain.entities import Notification, NotificationStatus, NotificationType
from app.infrastructure.repositories import NotificationRepository


def list_notifications(
    session: Session,
    user_id: int,
    *,
    unread_only: bool = False,
    notification_type: NotificationType | None = None,
    status: NotificationStatus | None = None,
    limit: int = 50,
) -> Sequence[Notification]:
    """Return the most recent notifications of ``user_id`` matching the filters."""

    if limit <= 0:
        raise ValueError("limit must be positive")
    return NotificationRepository(session).list_for_user(
        user_id,
        unread_only=unread_only,
        notification_type=notification_type,
        status=status,
        limit=limit,
    )


def count_unread(session: Session, user_id: int) -> int:
    """Return how many notifications ``user_id`` has not read yet."""

    return NotificationRepository(session).count_unread(user_id)
