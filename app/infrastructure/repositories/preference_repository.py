"""Persistence helpers for channel preferences."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Iterable

from sqlalchemy.orm import Session

from app.domain.entities import (
    DeliveryChannel,
    NotificationPreference,
    NotificationType,
    sort_channels,
)
from app.infrastructure.models import NotificationPreferenceModel
from app.utils import ensure_app_naive_datetime, ensure_app_timezone, now_in_app_timezone

from .base import store_errors


class PreferenceRepository:
    """Store of the channels each user enabled per notification type."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(
        self, user_id: int, notification_type: NotificationType
    ) -> frozenset[DeliveryChannel] | None:
        """Return the stored channel set or ``None`` when nothing was recorded."""

        model = self._get_model(user_id, notification_type)
        if model is None:
            return None
        return frozenset(DeliveryChannel(channel) for channel in model.channels or [])

    def list_for_user(self, user_id: int) -> Sequence[NotificationPreference]:
        with store_errors(self.session, "list preferences"):
            models = (
                self.session.query(NotificationPreferenceModel)
                .filter(NotificationPreferenceModel.user_id == user_id)
                .order_by(NotificationPreferenceModel.notification_type)
                .populate_existing()
                .all()
            )
        return [self._to_entity(model) for model in models]

    def set(
        self,
        user_id: int,
        notification_type: NotificationType,
        channels: Iterable[DeliveryChannel],
    ) -> NotificationPreference:
        """Replace the enabled channels of ``user_id`` for ``notification_type``."""

        values = [channel.value for channel in sort_channels(channels)]
        with store_errors(self.session, "set preference"):
            model = self._get_model(user_id, notification_type)
            if model is None:
                model = NotificationPreferenceModel(
                    user_id=user_id,
                    notification_type=NotificationType(notification_type).value,
                )
            model.channels = values
            model.updated_at = ensure_app_naive_datetime(now_in_app_timezone())
            self.session.add(model)
            self.session.commit()
            self.session.refresh(model)
        return self._to_entity(model)

    def _get_model(
        self, user_id: int, notification_type: NotificationType
    ) -> NotificationPreferenceModel | None:
        with store_errors(self.session, "get preference"):
            return (
                self.session.query(NotificationPreferenceModel)
                .filter(
                    NotificationPreferenceModel.user_id == user_id,
                    NotificationPreferenceModel.notification_type
                    == NotificationType(notification_type).value,
                )
                .populate_existing()
                .one_or_none()
            )

    @staticmethod
    def _to_entity(model: NotificationPreferenceModel) -> NotificationPreference:
        return NotificationPreference(
            user_id=model.user_id,
            notification_type=NotificationType(model.notification_type),
            channels=frozenset(DeliveryChannel(channel) for channel in model.channels or []),
            updated_at=ensure_app_timezone(model.updated_at),
        )


__all__ = ["PreferenceRepository"]
