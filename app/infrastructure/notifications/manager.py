"""Connection management helpers for notification websockets."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, DefaultDict, Protocol, Set

from anyio.from_thread import BlockingPortal

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """The part of a websocket connection the manager relies on."""

    async def accept(self) -> None: ...

    async def send_json(self, data: Any) -> None: ...


class NotificationConnectionManager:
    """Own every realtime subscription, grouped by user.

    Connections are registered on connect and pruned on disconnect or when a
    send to them fails. The registry is read from dispatch worker threads, so
    all access goes through a lock; sends are executed on the event loop that
    owns the sockets, reached through the attached :class:`BlockingPortal`.
    """

    def __init__(self) -> None:
        self._connections: DefaultDict[int, Set[Subscriber]] = defaultdict(set)
        self._lock = threading.Lock()
        self._portal: BlockingPortal | None = None

    @property
    def portal(self) -> BlockingPortal | None:
        return self._portal

    def attach_portal(self, portal: BlockingPortal) -> None:
        """Use ``portal`` to reach the event loop owning the connections."""

        self._portal = portal

    def detach_portal(self) -> None:
        self._portal = None

    async def connect(self, user_id: int, websocket: Subscriber) -> None:
        """Accept the websocket connection and register it for ``user_id``."""

        await websocket.accept()
        self.register(user_id, websocket)

    def register(self, user_id: int, websocket: Subscriber) -> None:
        with self._lock:
            self._connections[user_id].add(websocket)
        logger.info("Realtime subscriber connected for user %s", user_id)

    def disconnect(self, user_id: int, websocket: Subscriber) -> None:
        """Remove ``websocket`` from the pool for ``user_id``."""

        with self._lock:
            connections = self._connections.get(user_id)
            if connections is None:
                return
            connections.discard(websocket)
            if not connections:
                self._connections.pop(user_id, None)
        logger.info("Realtime subscriber disconnected for user %s", user_id)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._connections.get(user_id, ()))

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()

    async def send_to_user(self, user_id: int, message: dict[str, Any]) -> int:
        """Send ``message`` to every active connection for ``user_id``.

        Returns the number of connections that received the message.
        """

        with self._lock:
            connections = list(self._connections.get(user_id, set()))
        delivered = 0
        for connection in connections:
            try:
                await connection.send_json(message)
            except Exception as exc:
                logger.warning("Dropping realtime subscriber of user %s: %s", user_id, exc)
                self.disconnect(user_id, connection)
            else:
                delivered += 1
        return delivered


notification_manager = NotificationConnectionManager()


__all__ = ["NotificationConnectionManager", "Subscriber", "notification_manager"]
