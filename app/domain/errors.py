"""Errors raised by the notification dispatch domain."""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for notification dispatch errors."""


class ChannelError(NotificationError):
    """A single delivery attempt on one channel did not succeed."""

    retryable = False

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TransientChannelError(ChannelError):
    """Delivery failed for a reason expected to clear up (network, timeout, rate limit)."""

    retryable = True


class PermanentChannelError(ChannelError):
    """Delivery failed for a reason retrying cannot fix (invalid address, rejected payload)."""


class StoreUnavailable(NotificationError):
    """The notification or preference store could not be reached."""


class PreferenceLookupFailed(NotificationError):
    """Preferences could not be read; callers fall back to allowing every channel."""


class DispatchError(NotificationError):
    """A notification request could not be recorded."""


__all__ = [
    "ChannelError",
    "DispatchError",
    "NotificationError",
    "PermanentChannelError",
    "PreferenceLookupFailed",
    "StoreUnavailable",
    "TransientChannelError",
]
