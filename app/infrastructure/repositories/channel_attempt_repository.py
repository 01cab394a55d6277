"""Persistence helpers for per-channel delivery attempts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.domain.entities import AttemptState, ChannelAttempt, DeliveryChannel
from app.infrastructure.models import ChannelAttemptModel, NotificationModel
from app.utils import ensure_app_naive_datetime, ensure_app_timezone, now_in_app_timezone

from .base import store_errors

_TERMINAL_STATES = [AttemptState.DELIVERED.value, AttemptState.PERMANENT_FAILURE.value]


class ChannelAttemptRepository:
    """Read and advance :class:`ChannelAttempt` rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_notification(self, notification_id: int) -> Sequence[ChannelAttempt]:
        with store_errors(self.session, "list channel attempts"):
            models = (
                self.session.query(ChannelAttemptModel)
                .filter(ChannelAttemptModel.notification_id == notification_id)
                .order_by(ChannelAttemptModel.id)
                .populate_existing()
                .all()
            )
        return [self._to_entity(model) for model in models]

    def list_unfinished(self) -> Sequence[ChannelAttempt]:
        """Return non-terminal attempts of notifications that were not deleted."""

        with store_errors(self.session, "list unfinished channel attempts"):
            models = (
                self.session.query(ChannelAttemptModel)
                .join(NotificationModel, ChannelAttemptModel.notification_id == NotificationModel.id)
                .filter(NotificationModel.deleted_at.is_(None))
                .filter(ChannelAttemptModel.state.notin_(_TERMINAL_STATES))
                .order_by(ChannelAttemptModel.notification_id, ChannelAttemptModel.id)
                .all()
            )
        return [self._to_entity(model) for model in models]

    def get(self, notification_id: int, channel: DeliveryChannel) -> ChannelAttempt | None:
        model = self._get_model(notification_id, channel)
        return self._to_entity(model) if model is not None else None

    def begin_attempt(
        self, notification_id: int, channel: DeliveryChannel, attempt_number: int
    ) -> ChannelAttempt | None:
        """Record that attempt ``attempt_number`` is starting.

        Returns ``None`` when the pair is already terminal or the attempt was
        already recorded, in which case no send must happen.
        """

        with store_errors(self.session, "begin channel attempt"):
            updated = (
                self.session.query(ChannelAttemptModel)
                .filter(
                    ChannelAttemptModel.notification_id == notification_id,
                    ChannelAttemptModel.channel == DeliveryChannel(channel).value,
                    ChannelAttemptModel.state.notin_(_TERMINAL_STATES),
                    ChannelAttemptModel.attempt_count < attempt_number,
                )
                .update(
                    {
                        ChannelAttemptModel.state: AttemptState.PENDING.value,
                        ChannelAttemptModel.attempt_count: attempt_number,
                        ChannelAttemptModel.next_retry_at: None,
                        ChannelAttemptModel.updated_at: _now(),
                    },
                    synchronize_session=False,
                )
            )
            self.session.commit()
        if updated != 1:
            return None
        return self.get(notification_id, channel)

    def apply_outcome(
        self,
        notification_id: int,
        channel: DeliveryChannel,
        *,
        state: AttemptState,
        attempt_number: int,
        error: str | None = None,
        next_retry_at: datetime | None = None,
        detail: str | None = None,
    ) -> bool:
        """Store the outcome of attempt ``attempt_number``.

        Applying an outcome to a terminal attempt, re-applying the stored outcome,
        or applying one older than the stored attempt count changes nothing and
        returns ``False``.
        """

        state = AttemptState(state)
        with store_errors(self.session, "apply channel attempt outcome"):
            updated = (
                self.session.query(ChannelAttemptModel)
                .filter(
                    ChannelAttemptModel.notification_id == notification_id,
                    ChannelAttemptModel.channel == DeliveryChannel(channel).value,
                    ChannelAttemptModel.state.notin_(_TERMINAL_STATES),
                    ChannelAttemptModel.attempt_count <= attempt_number,
                    or_(
                        ChannelAttemptModel.state != state.value,
                        ChannelAttemptModel.attempt_count != attempt_number,
                    ),
                )
                .update(
                    {
                        ChannelAttemptModel.state: state.value,
                        ChannelAttemptModel.attempt_count: attempt_number,
                        ChannelAttemptModel.last_error: error,
                        ChannelAttemptModel.next_retry_at: ensure_app_naive_datetime(next_retry_at),
                        ChannelAttemptModel.detail: detail,
                        ChannelAttemptModel.updated_at: _now(),
                    },
                    synchronize_session=False,
                )
            )
            self.session.commit()
        return updated == 1

    def _get_model(
        self, notification_id: int, channel: DeliveryChannel
    ) -> ChannelAttemptModel | None:
        with store_errors(self.session, "get channel attempt"):
            return (
                self.session.query(ChannelAttemptModel)
                .filter(
                    ChannelAttemptModel.notification_id == notification_id,
                    ChannelAttemptModel.channel == DeliveryChannel(channel).value,
                )
                .populate_existing()
                .one_or_none()
            )

    @staticmethod
    def _to_entity(model: ChannelAttemptModel) -> ChannelAttempt:
        return ChannelAttempt(
            notification_id=model.notification_id,
            channel=DeliveryChannel(model.channel),
            state=AttemptState(model.state),
            attempt_count=model.attempt_count or 0,
            next_retry_at=ensure_app_timezone(model.next_retry_at),
            last_error=model.last_error,
            detail=model.detail,
            updated_at=ensure_app_timezone(model.updated_at),
        )


def _now() -> datetime | None:
    return ensure_app_naive_datetime(now_in_app_timezone())


__all__ = ["ChannelAttemptRepository"]
