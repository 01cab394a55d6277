"""ORM models used by the application infrastructure."""

from .channel_attempt import ChannelAttemptModel
from .deadline_reminder import DeadlineReminderModel
from .notification import NotificationModel
from .preference import NotificationPreferenceModel
from .task import TaskModel
from .user import UserModel

__all__ = [
    "ChannelAttemptModel",
    "DeadlineReminderModel",
    "NotificationModel",
    "NotificationPreferenceModel",
    "TaskModel",
    "UserModel",
]
