"""Tests for the notification dispatcher."""

from datetime import timedelta

import pytest

from permitflow.db.models import EmailQueueEntry, PermitEvent, PushSubscription
from permitflow.services.notifications import (
    EmailKind,
    NotificationDispatcher,
    reminder_dedup_key,
)

from tests.factories import (
    NOW,
    RecordingPushTransport,
    create_permit,
    create_subscription,
)


def _queued(db_session):
    return db_session.query(EmailQueueEntry).order_by(EmailQueueEntry.to_address).all()


class TestEnqueue:

    def test_enqueue_pending_entry(self, db_session, dispatcher):
        entry_id = dispatcher.enqueue_email("a@example.com", "Hello", "<p>Hi</p>")

        entry = db_session.query(EmailQueueEntry).one()
        assert str(entry.id) == entry_id
        assert entry.status == "pending"
        assert entry.created_at == NOW
        assert entry.dedup_key is None

    def test_non_reminder_emails_are_never_deduplicated(self, db_session, dispatcher):
        dispatcher.enqueue_email("a@example.com", "Same", "<p>x</p>")
        dispatcher.enqueue_email("a@example.com", "Same", "<p>x</p>")
        assert len(_queued(db_session)) == 2

    def test_reminder_dedup_inside_window(self, db_session, dispatcher, clock):
        key = reminder_dedup_key("Ops@Example.com", "PTW-1", "24h_expiry")

        assert dispatcher.enqueue_email("ops@example.com", "r", "b", dedup_key=key) is not None
        clock.set(NOW + timedelta(hours=23))
        assert dispatcher.enqueue_email("ops@example.com", "r", "b", dedup_key=key) is None
        clock.set(NOW + timedelta(hours=25))
        assert dispatcher.enqueue_email("ops@example.com", "r", "b", dedup_key=key) is not None

        assert len(_queued(db_session)) == 2

    def test_dedup_key_is_structured(self):
        assert reminder_dedup_key(" Ops@Example.com ", "PTW-1", "7d_expiry") == "7d_expiry:PTW-1:ops@example.com"

    def test_similar_refs_do_not_collide(self, db_session, dispatcher):
        dispatcher.enqueue_email("o@example.com", "r", "b", dedup_key=reminder_dedup_key("o@example.com", "PTW-1", "24h_expiry"))
        queued = dispatcher.enqueue_email(
            "o@example.com", "r", "b",
            dedup_key=reminder_dedup_key("o@example.com", "PTW-11", "24h_expiry"),
        )
        assert queued is not None


class TestRender:

    def test_body_is_autoescaped(self, db_session, dispatcher):
        permit = create_permit(db_session, ref_number="PTW-<b>")
        _, body = dispatcher.render(EmailKind.PERMIT_REJECTED, {
            "ref_number": permit.ref_number,
            "reason": "<script>alert(1)</script>",
        })
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_subject(self, dispatcher):
        subject, _ = dispatcher.render(EmailKind.PERMIT_APPROVED, {"ref_number": "PTW-9"})
        assert subject == "Permit Approved: PTW-9"


class TestNotifyDecision:

    def test_approval_email_and_push(self, db_session, dispatcher, push_transport):
        permit = create_permit(db_session, status="active", holder_id="worker-1")
        create_subscription(db_session, user_id="worker-1", endpoint="https://push.example.com/w1")
        create_subscription(db_session, user_id="someone-else")

        outcome = dispatcher.notify_decision(permit, approved=True)

        entry = db_session.query(EmailQueueEntry).one()
        assert entry.to_address == "holder@example.com"
        assert entry.subject == f"Permit Approved: {permit.ref_number}"
        assert str(entry.id) == outcome.email_id
        assert f"link={permit.unique_link}" in entry.body
        assert push_transport.endpoints == ["https://push.example.com/w1"]
        assert outcome.push.sent == 1

    def test_rejection_includes_reason(self, db_session, dispatcher):
        permit = create_permit(db_session, status="rejected")
        dispatcher.notify_decision(permit, approved=False, reason="Gas test missing")

        entry = db_session.query(EmailQueueEntry).one()
        assert entry.subject == f"Permit Rejected: {permit.ref_number}"
        assert "Gas test missing" in entry.body

    def test_no_holder_email(self, db_session, dispatcher):
        permit = create_permit(db_session, status="active", holder_email=None)
        assert dispatcher.notify_decision(permit, approved=True).email_id is None
        assert _queued(db_session) == []


class TestPendingApproval:

    def test_alerts_each_approver_once(self, db_session, dispatcher, lifecycle):
        permit = create_permit(db_session, status="pending")

        assert dispatcher.notify_pending_approval(permit, lifecycle) == 2
        db_session.refresh(permit)
        assert permit.notified_at == NOW
        assert dispatcher.notify_pending_approval(permit, lifecycle) == 0

        assert [e.to_address for e in _queued(db_session)] == [
            "approver@example.com",
            "manager@example.com",
        ]
        events = db_session.query(PermitEvent).filter(PermitEvent.permit_id == permit.id).all()
        assert [e.type for e in events] == ["notification_queued"]

    def test_skips_non_pending(self, db_session, dispatcher, lifecycle):
        permit = create_permit(db_session, status="active")
        assert dispatcher.notify_pending_approval(permit, lifecycle) == 0


class TestDispatchPush:

    def test_gone_endpoint_is_pruned(self, db_session, clock, settings):
        """One subscription answers 410: it is removed, the other is delivered."""
        live = create_subscription(db_session, endpoint="https://push.example.com/live")
        dead = create_subscription(db_session, endpoint="https://push.example.com/dead")
        transport = RecordingPushTransport(statuses={dead.endpoint: 410})
        dispatcher = NotificationDispatcher(db_session, push_transport=transport, clock=clock, settings=settings)

        result = dispatcher.dispatch_push({"title": "t"}, [live, dead])

        assert (result.sent, result.failed, result.pruned) == (1, 1, 1)
        assert result.errors[0]["status"] == 410
        remaining = db_session.query(PushSubscription).all()
        assert [s.endpoint for s in remaining] == [live.endpoint]

    def test_404_also_prunes(self, db_session, clock, settings):
        sub = create_subscription(db_session)
        transport = RecordingPushTransport(statuses={sub.endpoint: 404})
        dispatcher = NotificationDispatcher(db_session, push_transport=transport, clock=clock, settings=settings)
        assert dispatcher.dispatch_push({"title": "t"}, [sub]).pruned == 1

    def test_other_failures_keep_subscription(self, db_session, clock, settings):
        flaky = create_subscription(db_session, endpoint="https://push.example.com/flaky")
        broken = create_subscription(db_session, endpoint="https://push.example.com/broken")
        transport = RecordingPushTransport(
            statuses={flaky.endpoint: 500},
            errors={broken.endpoint: TimeoutError("timed out")},
        )
        dispatcher = NotificationDispatcher(db_session, push_transport=transport, clock=clock, settings=settings)

        result = dispatcher.dispatch_push({"title": "t"}, [flaky, broken])

        assert (result.sent, result.failed, result.pruned) == (0, 2, 0)
        assert db_session.query(PushSubscription).count() == 2

    def test_payload_is_compact_json(self, db_session, dispatcher, push_transport):
        sub = create_subscription(db_session)
        dispatcher.dispatch_push({"title": "Hi", "url": "https://x"}, [sub])
        assert push_transport.calls[0][1] == '{"title":"Hi","url":"https://x"}'

    def test_empty_fan_out(self, dispatcher, push_transport):
        result = dispatcher.dispatch_push({"title": "t"}, [])
        assert result.attempted == 0
        assert push_transport.calls == []

    def test_broadcast_reaches_every_subscription(self, db_session, dispatcher, push_transport):
        for _ in range(6):
            create_subscription(db_session)
        assert dispatcher.broadcast_push({"title": "t"}).sent == 6
        assert len(push_transport.calls) == 6
