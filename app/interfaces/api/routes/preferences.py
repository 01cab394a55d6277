"""Rutas para consultar y ajustar los canales preferidos de cada usuario."""

from typing import Iterable

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.application.use_cases.preferences import (
    get_preferences as get_preferences_uc,
    set_preference as set_preference_uc,
)
from app.domain.entities import DeliveryChannel, NotificationType, sort_channels
from app.domain.errors import StoreUnavailable
from app.interfaces.api.dependencies import get_db
from app.interfaces.api.schemas import PreferenceBulkUpdate, PreferenceRead, PreferenceUpdate

router = APIRouter(prefix="/preferences", tags=["preferences"])


def _to_read_model(
    user_id: int, notification_type: NotificationType, channels: Iterable[DeliveryChannel]
) -> PreferenceRead:
    return PreferenceRead(
        user_id=user_id,
        notification_type=notification_type,
        channels=list(sort_channels(channels)),
    )


def _read_all(db: Session, user_id: int) -> list[PreferenceRead]:
    try:
        preferences = get_preferences_uc(db, user_id)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [
        _to_read_model(user_id, notification_type, channels)
        for notification_type, channels in preferences.items()
    ]


@router.get("/{user_id}", response_model=list[PreferenceRead])
def read_preferences(user_id: int, db: Session = Depends(get_db)) -> list[PreferenceRead]:
    """Devuelve los canales habilitados para cada tipo de notificación."""

    return _read_all(db, user_id)


@router.put("/{user_id}", response_model=list[PreferenceRead])
def update_preferences(
    user_id: int,
    preferences_in: PreferenceBulkUpdate,
    db: Session = Depends(get_db),
) -> list[PreferenceRead]:
    """Actualiza varios tipos de notificación a la vez."""

    try:
        for notification_type, channels in preferences_in.preferences.items():
            set_preference_uc(db, user_id, notification_type, channels)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _read_all(db, user_id)


@router.get("/{user_id}/{notification_type}", response_model=PreferenceRead)
def read_preference(
    user_id: int,
    notification_type: NotificationType,
    db: Session = Depends(get_db),
) -> PreferenceRead:
    for preference in _read_all(db, user_id):
        if preference.notification_type is notification_type:
            return preference
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tipo de notificación desconocido")


@router.put("/{user_id}/{notification_type}", response_model=PreferenceRead)
def update_preference(
    user_id: int,
    notification_type: NotificationType,
    preference_in: PreferenceUpdate,
    db: Session = Depends(get_db),
) -> PreferenceRead:
    """Define los canales aceptados por el usuario para ``notification_type``."""

    try:
        preference = set_preference_uc(db, user_id, notification_type, preference_in.channels)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_read_model(preference.user_id, preference.notification_type, preference.channels)
