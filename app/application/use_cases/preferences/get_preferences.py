"""Use case for reading channel preferences."""

from sqlalchemy.orm import Session

from app.domain.entities import ALL_CHANNELS, DeliveryChannel, NotificationType
from app.infrastructure.repositories import PreferenceRepository


def get_preferences(
    session: Session, user_id: int
) -> dict[NotificationType, frozenset[DeliveryChannel]]:
    """Return the effective channels of ``user_id`` for every notification type."""

    stored = {
        preference.notification_type: preference.channels
        for preference in PreferenceRepository(session).list_for_user(user_id)
    }
    return {
        notification_type: stored.get(notification_type, ALL_CHANNELS)
        for notification_type in NotificationType
    }
