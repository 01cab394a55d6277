"""Use case for submitting a notification request."""

from app.application.services import DispatchEngine
from app.domain.entities import DispatchResult, NotificationRequest


def submit_notification(engine: DispatchEngine, request: NotificationRequest) -> DispatchResult:
    """Hand ``request`` to the dispatch engine.

    Succeeds whenever the notification could be recorded; delivery results are
    only visible later through the notification status.
    """

    if not request.title.strip():
        raise ValueError("Notification title is required")
    if not request.channels:
        raise ValueError("At least one channel must be requested")
    return engine.dispatch(request)
