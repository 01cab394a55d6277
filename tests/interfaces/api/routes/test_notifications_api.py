"""Integration tests for the notification and preference endpoints."""

from __future__ import annotations

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.application.services import build_runtime
from app.config import Settings
from app.domain.entities import User
from app.infrastructure.notifications import notification_manager
from app.infrastructure.repositories import UserRepository
from main import create_app


@pytest.fixture()
def client(db_engine, session, mail_transport):
    UserRepository(session).create(User(id=7, name="Ada Lovelace", email="ada@example.com"))

    def runtime_factory(session_factory):
        settings = Settings(
            retry_base_delay_seconds=0.01,
            retry_backoff_factor=2.0,
            deadline_scan_enabled=False,
        )
        return build_runtime(settings, session_factory=session_factory, mail_transport=mail_transport)

    app = create_app(database_engine=db_engine, runtime_factory=runtime_factory)
    with TestClient(app) as test_client:
        yield test_client
    notification_manager.clear()


def _wait_idle(client: TestClient) -> None:
    assert client.app.state.runtime.engine.scheduler.wait_idle(timeout=5)


def _submit(client: TestClient, **overrides):
    payload = {
        "user_id": 7,
        "notification_type": "TASK_ASSIGNED",
        "title": "New task",
        "message": "You were assigned to 'Quarterly report'",
        "priority": "HIGH",
        "channels": ["EMAIL", "REALTIME"],
        "payload": {"task_id": 12},
    }
    payload.update(overrides)
    return client.post("/notifications/", json=payload)


def test_submit_returns_accepted_and_delivers(client, mail_transport) -> None:
    response = _submit(client)

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["channels"] == ["EMAIL", "REALTIME"]

    _wait_idle(client)
    detail = client.get(f"/notifications/{body['notification_id']}").json()
    assert detail["status"] == "DELIVERED"
    assert detail["payload"] == {"task_id": 12}
    attempts = {attempt["channel"]: attempt for attempt in detail["attempts"]}
    assert attempts["EMAIL"]["state"] == "DELIVERED"
    assert attempts["REALTIME"]["outcome"] == "DELIVERED"
    assert attempts["REALTIME"]["detail"] == "no_subscriber"
    assert mail_transport.sent[0][0] == "ada@example.com"


@pytest.mark.parametrize(
    "overrides",
    [{"channels": []}, {"channels": ["SMS"]}, {"title": "   "}, {"notification_type": "NOPE"}],
)
def test_submit_rejects_invalid_requests(client, overrides) -> None:
    assert _submit(client, **overrides).status_code == 422


def test_muted_type_is_skipped(client, mail_transport) -> None:
    response = client.put("/preferences/7/COMMENT_MENTION", json={"channels": []})
    assert response.status_code == 200
    assert response.json()["channels"] == []

    result = _submit(client, notification_type="COMMENT_MENTION").json()

    assert result["status"] == "SKIPPED"
    assert result["channels"] == []
    assert client.get(f"/notifications/{result['notification_id']}").json()["attempts"] == []
    assert mail_transport.calls == 0


def test_listing_unread_count_and_read_receipts(client) -> None:
    first = _submit(client).json()["notification_id"]
    second = _submit(client, notification_type="STATUS_CHANGED").json()["notification_id"]
    _wait_idle(client)

    listed = client.get("/notifications/", params={"user_id": 7}).json()
    assert [item["id"] for item in listed] == [second, first]
    by_type = client.get("/notifications/", params={"user_id": 7, "type": "STATUS_CHANGED"}).json()
    assert [item["id"] for item in by_type] == [second]
    assert client.get("/notifications/unread-count", params={"user_id": 7}).json() == {
        "user_id": 7,
        "unread": 2,
    }

    assert client.post(f"/notifications/{first}/read").json() == {"updated": 1}
    assert client.post("/notifications/read", json={"ids": [first, second, second]}).json() == {
        "updated": 1
    }
    assert client.get("/notifications/unread-count", params={"user_id": 7}).json()["unread"] == 0
    unread = client.get("/notifications/", params={"user_id": 7, "unread_only": True}).json()
    assert unread == []
    assert client.get(f"/notifications/{first}").json()["status"] == "DELIVERED"


def test_delete_hides_the_notification(client) -> None:
    notification_id = _submit(client).json()["notification_id"]
    _wait_idle(client)

    assert client.delete(f"/notifications/{notification_id}").status_code == 204
    assert client.get(f"/notifications/{notification_id}").status_code == 404
    assert client.delete(f"/notifications/{notification_id}").status_code == 404
    assert client.post(f"/notifications/{notification_id}/read").status_code == 404


def test_unknown_notification_is_not_found(client) -> None:
    assert client.get("/notifications/999").status_code == 404


def test_preferences_default_to_every_channel(client) -> None:
    preferences = client.get("/preferences/7").json()

    assert len(preferences) == 4
    assert all(item["channels"] == ["EMAIL", "REALTIME"] for item in preferences)


def test_preferences_can_be_updated_in_bulk(client) -> None:
    response = client.put(
        "/preferences/7",
        json={"preferences": {"DEADLINE_REMINDER": ["EMAIL"], "COMMENT_MENTION": ["REALTIME"]}},
    )

    assert response.status_code == 200
    by_type = {item["notification_type"]: item["channels"] for item in response.json()}
    assert by_type["DEADLINE_REMINDER"] == ["EMAIL"]
    assert by_type["COMMENT_MENTION"] == ["REALTIME"]
    assert by_type["TASK_ASSIGNED"] == ["EMAIL", "REALTIME"]
    single = client.get("/preferences/7/DEADLINE_REMINDER").json()
    assert single["channels"] == ["EMAIL"]

    result = _submit(client, notification_type="DEADLINE_REMINDER").json()
    assert result["channels"] == ["EMAIL"]


def test_websocket_receives_notifications_and_acknowledges(client) -> None:
    with client.websocket_connect("/notifications/ws?user_id=7") as websocket:
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}

        result = _submit(client, channels=["REALTIME"]).json()
        message = websocket.receive_json()
        assert message["type"] == "notification"
        assert message["data"]["id"] == result["notification_id"]
        assert message["data"]["priority"] == "HIGH"

        websocket.send_json({"type": "ack", "ids": [result["notification_id"]]})
        assert websocket.receive_json() == {"type": "ack", "updated": 1}

    _wait_idle(client)
    detail = client.get(f"/notifications/{result['notification_id']}").json()
    assert detail["attempts"][0]["detail"] is None
    assert detail["read_at"] is not None


def test_websocket_sends_unread_backlog_on_connect(client) -> None:
    notification_id = _submit(client, channels=["EMAIL"]).json()["notification_id"]
    _wait_idle(client)

    with client.websocket_connect("/notifications/ws?user_id=7") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "init"
    assert [item["id"] for item in message["data"]] == [notification_id]


def test_websocket_requires_a_user(client) -> None:
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/notifications/ws") as websocket:
            websocket.receive_json()


def test_submit_without_running_engine_is_unavailable(db_engine) -> None:
    app = create_app(database_engine=db_engine)

    response = TestClient(app).post(
        "/notifications/",
        json={"user_id": 7, "notification_type": "TASK_ASSIGNED", "title": "x"},
    )

    assert response.status_code == 503
