"""Use case for updating channel preferences."""

from typing import Iterable

from sqlalchemy.orm import Session

from app.domain.entities import DeliveryChannel, NotificationPreference, NotificationType
from app.infrastructure.repositories import PreferenceRepository


def set_preference(
    session: Session,
    user_id: int,
    notification_type: NotificationType,
    channels: Iterable[DeliveryChannel],
) -> NotificationPreference:
    """Store the channels ``user_id`` accepts for ``notification_type``.

    An empty set is allowed and mutes the type entirely.
    """

    return PreferenceRepository(session).set(
        user_id, NotificationType(notification_type), [DeliveryChannel(c) for c in channels]
    )
