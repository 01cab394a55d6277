"""Endpoints and websocket handler for notifications."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from app.application.services import DispatchEngine
from app.application.use_cases.notifications import (
    NotificationDetail,
    count_unread as count_unread_uc,
    delete_notification as delete_notification_uc,
    get_notification as get_notification_uc,
    list_notifications as list_notifications_uc,
    mark_read as mark_read_uc,
    submit_notification as submit_notification_uc,
)
from app.domain.entities import (
    DispatchResult,
    Notification,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
)
from app.domain.errors import DispatchError, StoreUnavailable
from app.infrastructure.database import session_scope
from app.infrastructure.notifications import notification_manager, serialize_notification
from app.infrastructure.repositories import NotificationRepository
from app.interfaces.api.dependencies import get_db, get_dispatch_engine, get_session_factory
from app.interfaces.api.schemas import (
    ChannelAttemptRead,
    DispatchResultRead,
    NotificationCreate,
    NotificationDetailRead,
    NotificationMarkReadRequest,
    NotificationMarkReadResponse,
    NotificationRead,
    UnreadCountRead,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


def _notification_to_schema(notification: Notification) -> NotificationRead:
    return NotificationRead.model_validate(notification)


def _detail_to_schema(detail: NotificationDetail) -> NotificationDetailRead:
    base = _notification_to_schema(detail.notification)
    return NotificationDetailRead(
        **base.model_dump(),
        attempts=[ChannelAttemptRead.model_validate(attempt) for attempt in detail.attempts],
    )


def _result_to_schema(result: DispatchResult) -> DispatchResultRead:
    return DispatchResultRead(
        notification_id=result.notification_id,
        status=result.status,
        channels=list(result.channels),
    )


def _store_unavailable(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.post("/", response_model=DispatchResultRead, status_code=status.HTTP_202_ACCEPTED)
def submit_notification(
    notification_in: NotificationCreate,
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> DispatchResultRead:
    """Record a notification and queue its delivery on every enabled channel."""

    request = NotificationRequest(
        user_id=notification_in.user_id,
        notification_type=notification_in.notification_type,
        title=notification_in.title,
        message=notification_in.message,
        priority=notification_in.priority,
        channels=tuple(notification_in.channels),
        payload=notification_in.payload,
    )
    try:
        result = submit_notification_uc(engine, request)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DispatchError as exc:
        raise _store_unavailable(exc) from exc
    return _result_to_schema(result)


@router.get("/", response_model=list[NotificationRead])
def list_notifications(
    user_id: int = Query(..., ge=1),
    unread_only: bool = False,
    notification_type: NotificationType | None = Query(default=None, alias="type"),
    notification_status: NotificationStatus | None = Query(default=None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    """Return the most recent notifications of ``user_id``."""

    try:
        notifications = list_notifications_uc(
            db,
            user_id,
            unread_only=unread_only,
            notification_type=notification_type,
            status=notification_status,
            limit=limit,
        )
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return [_notification_to_schema(notification) for notification in notifications]


@router.get("/unread-count", response_model=UnreadCountRead)
def unread_count(user_id: int = Query(..., ge=1), db: Session = Depends(get_db)) -> UnreadCountRead:
    try:
        unread = count_unread_uc(db, user_id)
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return UnreadCountRead(user_id=user_id, unread=unread)


@router.post("/read", response_model=NotificationMarkReadResponse)
def mark_notifications_read(
    payload: NotificationMarkReadRequest,
    db: Session = Depends(get_db),
) -> NotificationMarkReadResponse:
    """Mark a batch of notifications as read."""

    try:
        updated = mark_read_uc(db, payload.unique_ids(), user_id=payload.user_id)
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return NotificationMarkReadResponse(updated=updated)


@router.get("/{notification_id}", response_model=NotificationDetailRead)
def read_notification(notification_id: int, db: Session = Depends(get_db)) -> NotificationDetailRead:
    """Return the notification together with the state of each channel."""

    try:
        detail = get_notification_uc(db, notification_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return _detail_to_schema(detail)


@router.post("/{notification_id}/read", response_model=NotificationMarkReadResponse)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
) -> NotificationMarkReadResponse:
    try:
        updated = mark_read_uc(db, [notification_id])
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    if not updated and NotificationRepository(db).get(notification_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return NotificationMarkReadResponse(updated=updated)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(notification_id: int, db: Session = Depends(get_db)) -> Response:
    """Delete a notification and cancel whatever retries it still has scheduled."""

    try:
        delete_notification_uc(db, notification_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreUnavailable as exc:
        raise _store_unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _unread_payloads(websocket: WebSocket, user_id: int) -> list[dict[str, Any]]:
    with session_scope(get_session_factory(websocket)) as session:
        pending = NotificationRepository(session).list_for_user(user_id, unread_only=True)
    return [serialize_notification(notification) for notification in pending]


def _acknowledge(websocket: WebSocket, user_id: int, ids: list[int]) -> int:
    with session_scope(get_session_factory(websocket)) as session:
        return NotificationRepository(session).mark_as_read(ids, user_id=user_id)


@router.websocket("/ws")
async def notifications_websocket(websocket: WebSocket) -> None:
    """Websocket endpoint that streams notifications to a subscribed user."""

    raw_user_id = websocket.query_params.get("user_id")
    try:
        user_id = int(raw_user_id) if raw_user_id is not None else 0
    except ValueError:
        user_id = 0
    if user_id <= 0:
        await websocket.close(code=1008)
        return

    try:
        pending_notifications = _unread_payloads(websocket, user_id)
    except StoreUnavailable:
        await websocket.close(code=1011)
        return

    await notification_manager.connect(user_id, websocket)
    try:
        if pending_notifications:
            await websocket.send_json({"type": "init", "data": pending_notifications})
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                continue

            if not isinstance(message, dict):
                continue

            message_type = message.get("type")
            if message_type == "ping":
                await websocket.send_json({"type": "pong"})
                continue

            if message_type == "ack":
                ids = message.get("ids", [])
                if isinstance(ids, list) and ids:
                    try:
                        updated = _acknowledge(websocket, user_id, ids)
                    except StoreUnavailable as exc:
                        logger.warning("Could not acknowledge notifications: %s", exc)
                        continue
                    await websocket.send_json({"type": "ack", "updated": updated})
                continue
    except WebSocketDisconnect:
        logger.debug("Websocket of user %s closed by the client", user_id)
    finally:
        notification_manager.disconnect(user_id, websocket)
