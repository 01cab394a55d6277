"""Pydantic models describing notification payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.domain.entities import (
    AttemptOutcome,
    AttemptState,
    DeliveryChannel,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)


class NotificationCreate(BaseModel):
    """Request to notify a user."""

    user_id: int = Field(..., ge=1)
    notification_type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(default="", max_length=4000)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    channels: list[DeliveryChannel] = Field(
        default_factory=lambda: list(DeliveryChannel), min_length=1
    )
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("El título no puede estar vacío")
        return value


class DispatchResultRead(BaseModel):
    """Immediate answer to a submission; delivery happens afterwards."""

    notification_id: int
    status: NotificationStatus
    channels: list[DeliveryChannel]


class ChannelAttemptRead(BaseModel):
    channel: DeliveryChannel
    state: AttemptState
    outcome: AttemptOutcome
    attempt_count: int
    next_retry_at: datetime | None = None
    last_error: str | None = None
    detail: str | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class NotificationMarkReadRequest(BaseModel):
    """Payload used to mark a batch of notifications as read."""

    ids: list[int] = Field(..., min_length=1, description="Identificadores de notificaciones")
    user_id: int | None = Field(
        default=None, description="Restringe la operación a las notificaciones del usuario"
    )

    def unique_ids(self) -> list[int]:
        """Return the list of identifiers without duplicates preserving order."""

        unique: list[int] = []
        seen: set[int] = set()
        for notification_id in self.ids:
            if notification_id in seen:
                continue
            seen.add(notification_id)
            unique.append(notification_id)
        return unique


class NotificationMarkReadResponse(BaseModel):
    updated: int


class UnreadCountRead(BaseModel):
    user_id: int
    unread: int


class NotificationRead(BaseModel):
    """Representation of a notification delivered to the client."""

    id: int
    user_id: int
    notification_type: NotificationType
    priority: NotificationPriority
    status: NotificationStatus
    title: str
    message: str
    channels: list[DeliveryChannel] = Field(default_factory=list)
    requested_channels: list[DeliveryChannel] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime | None = None
    read_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class NotificationDetailRead(NotificationRead):
    attempts: list[ChannelAttemptRead] = Field(default_factory=list)


__all__ = [
    "ChannelAttemptRead",
    "DispatchResultRead",
    "NotificationCreate",
    "NotificationDetailRead",
    "NotificationMarkReadRequest",
    "NotificationMarkReadResponse",
    "NotificationRead",
    "UnreadCountRead",
]
