"""Long-running notification services."""

from .deadline_trigger import DEFAULT_OFFSETS_MINUTES, DeadlineTrigger, build_reminder_request
from .dispatch_engine import INTERRUPTED, RETRIES_EXHAUSTED, DispatchEngine
from .preference_resolver import PreferenceResolver
from .retry_scheduler import (
    AttemptKey,
    AttemptListener,
    AttemptReport,
    RetryPolicy,
    RetryScheduler,
)
from .runtime import NotificationRuntime, build_runtime

__all__ = [
    "AttemptKey",
    "AttemptListener",
    "AttemptReport",
    "DEFAULT_OFFSETS_MINUTES",
    "DeadlineTrigger",
    "DispatchEngine",
    "INTERRUPTED",
    "NotificationRuntime",
    "PreferenceResolver",
    "RETRIES_EXHAUSTED",
    "RetryPolicy",
    "RetryScheduler",
    "build_reminder_request",
    "build_runtime",
]
