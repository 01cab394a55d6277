from .notification import (
    ChannelAttemptRead,
    DispatchResultRead,
    NotificationCreate,
    NotificationDetailRead,
    NotificationMarkReadRequest,
    NotificationMarkReadResponse,
    NotificationRead,
    UnreadCountRead,
)
from .preference import PreferenceBulkUpdate, PreferenceRead, PreferenceUpdate

__all__ = [
    "ChannelAttemptRead",
    "DispatchResultRead",
    "NotificationCreate",
    "NotificationDetailRead",
    "NotificationMarkReadRequest",
    "NotificationMarkReadResponse",
    "NotificationRead",
    "PreferenceBulkUpdate",
    "PreferenceRead",
    "PreferenceUpdate",
    "UnreadCountRead",
]
