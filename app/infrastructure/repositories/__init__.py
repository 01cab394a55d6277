"""Repository implementations for infrastructure layer."""

from .channel_attempt_repository import ChannelAttemptRepository
from .deadline_reminder_repository import DeadlineReminderRepository
from .notification_repository import NotificationRepository
from .preference_repository import PreferenceRepository
from .task_repository import TaskRepository
from .user_repository import UserRepository

__all__ = [
    "ChannelAttemptRepository",
    "DeadlineReminderRepository",
    "NotificationRepository",
    "PreferenceRepository",
    "TaskRepository",
    "UserRepository",
]
