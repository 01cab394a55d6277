"""Resolve which channels a user accepts for a notification type."""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from app.domain.entities import ALL_CHANNELS, DeliveryChannel, NotificationType
from app.domain.errors import PreferenceLookupFailed, StoreUnavailable
from app.infrastructure.database import session_scope
from app.infrastructure.repositories import PreferenceRepository


class PreferenceResolver:
    """Read preferences straight from the store on every call.

    Nothing is cached so that a preference change applies to the very next
    notification of that type.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    def enabled_channels(
        self, user_id: int, notification_type: NotificationType
    ) -> frozenset[DeliveryChannel]:
        try:
            with session_scope(self._session_factory) as session:
                stored = PreferenceRepository(session).get(user_id, notification_type)
        except StoreUnavailable as exc:
            raise PreferenceLookupFailed(
                f"Preferences of user {user_id} for {NotificationType(notification_type).value} "
                f"unavailable: {exc}"
            ) from exc
        if stored is None:
            return ALL_CHANNELS
        return stored


__all__ = ["PreferenceResolver"]
