"""Tests for the push subscription registry."""

import pytest

from permitflow.core.errors import ValidationError
from permitflow.db.models import PushSubscription
from permitflow.services.push_registry import (
    PushSubscriptionRegistry,
    endpoint_hash,
)

ENDPOINT = "https://fcm.googleapis.com/fcm/send/abc123"


@pytest.fixture
def registry(db_session, clock):
    return PushSubscriptionRegistry(db_session, clock=clock)


class TestUpsert:

    def test_create_then_update(self, db_session, registry):
        created = registry.upsert(ENDPOINT, "key-1", "auth-1", user_id="u1")
        updated = registry.upsert(ENDPOINT, "key-2", "auth-2")

        assert created.action == "created"
        assert updated.action == "updated"
        assert updated.id == created.id

        rows = db_session.query(PushSubscription).all()
        assert len(rows) == 1
        assert rows[0].p256dh == "key-2"
        assert rows[0].auth == "auth-2"
        # user id kept when the refresh is anonymous
        assert rows[0].user_id == "u1"
        assert rows[0].endpoint_hash == endpoint_hash(ENDPOINT)

    def test_update_replaces_user_when_given(self, registry):
        registry.upsert(ENDPOINT, "k", "a", user_id="u1")
        registry.upsert(ENDPOINT, "k", "a", user_id="u2")
        assert [s.user_id for s in registry.list()] == ["u2"]

    def test_endpoint_whitespace_is_ignored(self, registry):
        registry.upsert(ENDPOINT, "k", "a")
        assert registry.upsert(f"  {ENDPOINT}\n", "k", "a").action == "updated"

    @pytest.mark.parametrize("endpoint,p256dh,auth", [
        ("", "k", "a"),
        (ENDPOINT, "", "a"),
        (ENDPOINT, "k", ""),
        (None, "k", "a"),
    ])
    def test_missing_fields(self, registry, endpoint, p256dh, auth):
        with pytest.raises(ValidationError):
            registry.upsert(endpoint, p256dh, auth)

    def test_oversized_keys(self, registry):
        with pytest.raises(ValidationError):
            registry.upsert(ENDPOINT, "k" * 256, "a")
        with pytest.raises(ValidationError):
            registry.upsert(ENDPOINT, "k", "a" * 256)

    def test_concurrent_insert_resolves_to_update(self, db_session, session_factory, clock):
        """A row inserted by another session between lookup and insert."""
        registry = PushSubscriptionRegistry(db_session, clock=clock)
        other = PushSubscriptionRegistry(session_factory(), clock=clock)

        original_find = registry._find
        calls = []

        def racing_find(key):
            if not calls:
                calls.append(key)
                other.upsert(ENDPOINT, "theirs", "theirs")
                return None
            return original_find(key)

        registry._find = racing_find
        result = registry.upsert(ENDPOINT, "mine", "mine")

        assert result.action == "updated"
        rows = db_session.query(PushSubscription).populate_existing().all()
        assert len(rows) == 1
        assert rows[0].p256dh == "mine"
        other.db.close()


class TestDelete:

    def test_delete_existing(self, registry):
        registry.upsert(ENDPOINT, "k", "a")
        assert registry.delete(ENDPOINT) == 1
        assert registry.list() == []

    def test_delete_missing_is_zero(self, registry):
        assert registry.delete("https://push.example.com/unknown") == 0

    def test_delete_requires_endpoint(self, registry):
        with pytest.raises(ValidationError):
            registry.delete("  ")


def test_list_filters_by_user(registry):
    registry.upsert("https://push.example.com/1", "k", "a", user_id="u1")
    registry.upsert("https://push.example.com/2", "k", "a", user_id="u2")
    registry.upsert("https://push.example.com/3", "k", "a")

    assert [s.endpoint for s in registry.list(user_id="u1")] == ["https://push.example.com/1"]
    assert len(registry.list()) == 3
