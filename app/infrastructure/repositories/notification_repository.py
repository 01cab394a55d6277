"""Persistence helpers for notification entities."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.domain.entities import (
    AttemptState,
    DeliveryChannel,
    Notification,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    STATUS_PREDECESSORS,
)
from app.infrastructure.models import ChannelAttemptModel, NotificationModel
from app.utils import (
    ensure_app_naive_datetime,
    ensure_app_timezone,
    now_in_app_timezone,
)

from .base import store_errors


class NotificationRepository:
    """Provide the notification store operations over a SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def save(self, notification: Notification) -> Notification:
        """Insert ``notification`` and a pending attempt row for each of its channels."""

        model = NotificationModel()
        self._apply_entity_to_model(model, notification)
        for channel in notification.channels:
            model.attempts.append(
                ChannelAttemptModel(
                    channel=DeliveryChannel(channel).value,
                    state=AttemptState.PENDING.value,
                    attempt_count=0,
                    updated_at=model.created_at,
                )
            )
        with store_errors(self.session, "save notification"):
            self.session.add(model)
            self.session.commit()
            self.session.refresh(model)
        return self._to_entity(model)

    def get(self, notification_id: int, *, include_deleted: bool = False) -> Notification | None:
        with store_errors(self.session, "get notification"):
            model = self.session.get(NotificationModel, notification_id)
            if model is not None:
                self.session.refresh(model)
        if model is None:
            return None
        if model.deleted_at is not None and not include_deleted:
            return None
        return self._to_entity(model)

    def list_for_user(
        self,
        user_id: int,
        *,
        unread_only: bool = False,
        notification_type: NotificationType | None = None,
        status: NotificationStatus | None = None,
        limit: int | None = 50,
    ) -> Sequence[Notification]:
        query = (
            self.session.query(NotificationModel)
            .filter(NotificationModel.user_id == user_id)
            .filter(NotificationModel.deleted_at.is_(None))
        )
        if unread_only:
            query = query.filter(NotificationModel.read_at.is_(None))
        if notification_type is not None:
            query = query.filter(
                NotificationModel.notification_type == NotificationType(notification_type).value
            )
        if status is not None:
            query = query.filter(NotificationModel.status == NotificationStatus(status).value)
        query = query.order_by(
            NotificationModel.created_at.desc(), NotificationModel.id.desc()
        )
        if limit is not None:
            query = query.limit(limit)
        with store_errors(self.session, "list notifications"):
            models = query.all()
        return [self._to_entity(model) for model in models]

    def count_unread(self, user_id: int) -> int:
        with store_errors(self.session, "count unread notifications"):
            count = (
                self.session.query(func.count(NotificationModel.id))
                .filter(NotificationModel.user_id == user_id)
                .filter(NotificationModel.deleted_at.is_(None))
                .filter(NotificationModel.read_at.is_(None))
                .scalar()
            )
        return int(count or 0)

    def update_status(self, notification_id: int, status: NotificationStatus) -> bool:
        """Move the notification to ``status`` if that is a forward transition.

        The update is conditional on the stored status, so a stale writer can never
        move a notification backwards. Returns ``True`` when a row changed.
        """

        status = NotificationStatus(status)
        predecessors = [value.value for value in STATUS_PREDECESSORS[status]]
        if not predecessors:
            return False
        with store_errors(self.session, "update notification status"):
            updated = (
                self.session.query(NotificationModel)
                .filter(
                    NotificationModel.id == notification_id,
                    NotificationModel.status.in_(predecessors),
                )
                .update(
                    {
                        NotificationModel.status: status.value,
                        NotificationModel.updated_at: ensure_app_naive_datetime(
                            now_in_app_timezone()
                        ),
                    },
                    synchronize_session=False,
                )
            )
            self.session.commit()
        return updated == 1

    def mark_as_read(
        self, notification_ids: Iterable[int], *, user_id: int | None = None
    ) -> int:
        """Flag the given notifications as read; already read ones keep their timestamp."""

        ids = [notification_id for notification_id in notification_ids if notification_id is not None]
        if not ids:
            return 0
        query = self.session.query(NotificationModel).filter(
            NotificationModel.id.in_(ids),
            NotificationModel.read_at.is_(None),
            NotificationModel.deleted_at.is_(None),
        )
        if user_id is not None:
            query = query.filter(NotificationModel.user_id == user_id)
        with store_errors(self.session, "mark notifications as read"):
            updated = query.update(
                {NotificationModel.read_at: ensure_app_naive_datetime(now_in_app_timezone())},
                synchronize_session=False,
            )
            self.session.commit()
        return updated

    def delete(self, notification_id: int) -> bool:
        """Soft delete the notification so pending retries observe the cancellation."""

        with store_errors(self.session, "delete notification"):
            updated = (
                self.session.query(NotificationModel)
                .filter(
                    NotificationModel.id == notification_id,
                    NotificationModel.deleted_at.is_(None),
                )
                .update(
                    {NotificationModel.deleted_at: ensure_app_naive_datetime(now_in_app_timezone())},
                    synchronize_session=False,
                )
            )
            self.session.commit()
        return updated == 1

    @staticmethod
    def _apply_entity_to_model(model: NotificationModel, notification: Notification) -> None:
        model.created_at = (
            ensure_app_naive_datetime(notification.created_at)
            or ensure_app_naive_datetime(now_in_app_timezone())
        )
        model.updated_at = model.created_at
        model.user_id = notification.user_id
        model.notification_type = NotificationType(notification.notification_type).value
        model.title = notification.title
        model.message = notification.message
        model.priority = NotificationPriority(notification.priority).value
        model.requested_channels = [
            DeliveryChannel(channel).value for channel in notification.requested_channels
        ]
        model.channels = [DeliveryChannel(channel).value for channel in notification.channels]
        model.status = NotificationStatus(notification.status).value
        model.payload = notification.payload or {}
        model.read_at = ensure_app_naive_datetime(notification.read_at)

    @staticmethod
    def _to_entity(model: NotificationModel) -> Notification:
        return Notification(
            id=model.id,
            user_id=model.user_id,
            notification_type=NotificationType(model.notification_type),
            title=model.title,
            message=model.message,
            priority=NotificationPriority(model.priority),
            requested_channels=tuple(
                DeliveryChannel(channel) for channel in model.requested_channels or []
            ),
            channels=tuple(DeliveryChannel(channel) for channel in model.channels or []),
            status=NotificationStatus(model.status),
            payload=model.payload or {},
            created_at=ensure_app_timezone(model.created_at),
            updated_at=ensure_app_timezone(model.updated_at),
            read_at=ensure_app_timezone(model.read_at),
            deleted_at=ensure_app_timezone(model.deleted_at),
        )


__all__ = ["NotificationRepository"]
