"""Use cases exposed to the API layer for notifications."""

from .delete_notification import delete_notification
from .get_notification import NotificationDetail, get_notification
from .list_notifications import count_unread, list_notifications
from .mark_read import mark_read
from .submit_notification import submit_notification

__all__ = [
    "NotificationDetail",
    "count_unread",
    "delete_notification",
    "get_notification",
    "list_notifications",
    "mark_read",
    "submit_notification",
]
