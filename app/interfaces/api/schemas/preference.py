"""Schemas for per-user channel preferences."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.domain.entities import DeliveryChannel, NotificationType


class PreferenceUpdate(BaseModel):
    """Channels accepted for a notification type; an empty list mutes it."""

    channels: list[DeliveryChannel] = Field(default_factory=list)


class PreferenceBulkUpdate(BaseModel):
    """Channels per notification type; types left out keep their current setting."""

    preferences: dict[NotificationType, list[DeliveryChannel]] = Field(..., min_length=1)


class PreferenceRead(BaseModel):
    user_id: int
    notification_type: NotificationType
    channels: list[DeliveryChannel]


__all__ = ["PreferenceBulkUpdate", "PreferenceRead", "PreferenceUpdate"]
