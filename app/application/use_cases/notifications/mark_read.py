"""Use case for read receipts."""

from typing import Iterable

from sqlalchemy.orm import Session

from app.infrastructure.repositories import NotificationRepository


def mark_read(session: Session, notification_ids: Iterable[int], *, user_id: int | None = None) -> int:
    """Flag notifications as read without touching their delivery status."""

    return NotificationRepository(session).mark_as_read(notification_ids, user_id=user_id)
