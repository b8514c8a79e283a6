"""Tests for the push subscription endpoints."""

from fastapi.testclient import TestClient

from permitflow.core.auth import Role
from permitflow.db.models import PushSubscription
from permitflow.services.notifications import NotificationDispatcher

from tests.factories import RecordingPushTransport

ENDPOINT = "https://updates.push.services.mozilla.com/wpush/v2/e1"


def _subscribe(client, headers=None, **keys):
    return client.post(
        "/api/push/subscribe",
        json={"endpoint": ENDPOINT, "keys": {"p256dh": keys.get("p256dh", "BNc"), "auth": keys.get("auth", "tBH")}},
        headers=headers or {},
    )


class TestSubscribe:

    def test_create_then_update(self, client: TestClient, db_session):
        first = _subscribe(client)
        second = _subscribe(client, p256dh="rotated")

        assert first.status_code == 200
        assert first.json()["ok"] is True
        assert first.json()["action"] == "created"
        assert second.json()["action"] == "updated"
        assert second.json()["id"] == first.json()["id"]
        rows = db_session.query(PushSubscription).all()
        assert len(rows) == 1
        assert rows[0].p256dh == "rotated"

    def test_user_taken_from_token(self, client, db_session, auth_headers):
        _subscribe(client, headers=auth_headers("worker-9", Role.USER))
        assert db_session.query(PushSubscription).one().user_id == "worker-9"

    def test_missing_keys(self, client):
        response = client.post("/api/push/subscribe", json={"endpoint": ENDPOINT})
        assert response.status_code == 422
        assert response.json() == {"ok": False, "error": "Missing endpoint or keys"}

    def test_oversized_key(self, client):
        response = _subscribe(client, auth="x" * 300)
        assert response.status_code == 422
        assert response.json()["ok"] is False


class TestUnsubscribe:

    def test_json_body(self, client):
        _subscribe(client)
        response = client.post("/api/push/unsubscribe", json={"endpoint": ENDPOINT})
        assert response.json() == {"ok": True, "deleted": 1}

    def test_subscription_object(self, client):
        _subscribe(client)
        response = client.post("/api/push/unsubscribe", json={"subscription": {"endpoint": ENDPOINT}})
        assert response.json()["deleted"] == 1

    def test_form_body(self, client):
        _subscribe(client)
        response = client.post("/api/push/unsubscribe", data={"endpoint": ENDPOINT})
        assert response.json() == {"ok": True, "deleted": 1}

    def test_unknown_endpoint(self, client):
        response = client.post("/api/push/unsubscribe", json={"endpoint": "https://push.example.com/none"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "deleted": 0}

    def test_missing_endpoint(self, client):
        response = client.post("/api/push/unsubscribe", json={})
        assert response.status_code == 422
        assert response.json() == {"ok": False, "error": "Missing endpoint"}


def test_gone_endpoint_is_pruned_then_unsubscribe_finds_nothing(client, db_session, clock, settings):
    """E1 subscribes, a delivery answers 410, a later unsubscribe deletes nothing."""
    _subscribe(client)
    transport = RecordingPushTransport(statuses={ENDPOINT: 410})
    dispatcher = NotificationDispatcher(db_session, push_transport=transport, clock=clock, settings=settings)

    result = dispatcher.broadcast_push({"title": "Test"})

    assert result.pruned == 1
    assert db_session.query(PushSubscription).count() == 0
    response = client.post("/api/push/unsubscribe", json={"endpoint": ENDPOINT})
    assert response.json() == {"ok": True, "deleted": 0}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness(client):
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["checks"]["database"]["status"] == "healthy"
