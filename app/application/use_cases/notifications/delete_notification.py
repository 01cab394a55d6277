"""Use case for deleting a notification."""

from sqlalchemy.orm import Session

from app.infrastructure.repositories import NotificationRepository


def delete_notification(session: Session, notification_id: int) -> None:
    """Delete the notification; retries still scheduled for it become no-ops."""

    if not NotificationRepository(session).delete(notification_id):
        raise LookupError("Notification not found")
