"""Aggregate application use cases."""

from .notifications import (
    NotificationDetail,
    count_unread,
    delete_notification,
    get_notification,
    list_notifications,
    mark_read,
    submit_notification,
)
from .preferences import get_preferences, set_preference

__all__ = [
    "NotificationDetail",
    "count_unread",
    "delete_notification",
    "get_notification",
    "get_preferences",
    "list_notifications",
    "mark_read",
    "set_preference",
    "submit_notification",
]
