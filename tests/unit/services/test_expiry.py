"""Tests for the automatic expiry sweep."""

from datetime import timedelta

import pytest

from permitflow.core.lifecycle import PermitLifecycle
from permitflow.db.models import Permit
from permitflow.services.expiry import AutoExpiryScheduler

from tests.factories import NOW, create_permit


def _status(db_session, permit):
    db_session.expire_all()
    return db_session.get(Permit, permit.id).status


class TestAutoExpiry:

    def test_expires_exactly_the_eligible_permits(self, db_session, lifecycle, activity):
        past = NOW - timedelta(hours=1)
        active_due = create_permit(db_session, status="active", valid_to=past)
        issued_due = create_permit(db_session, status="issued", valid_to=past)
        still_valid = create_permit(db_session, status="active", valid_to=NOW + timedelta(hours=1))
        pending_past = create_permit(db_session, status="pending", valid_to=past)
        closed_past = create_permit(db_session, status="closed", valid_to=past)

        report = AutoExpiryScheduler(db_session, lifecycle, activity=activity).run(now=NOW)

        assert report.to_dict() == {"found": 2, "updated": 2, "skipped": 0, "errors": []}
        assert _status(db_session, active_due) == "expired"
        assert _status(db_session, issued_due) == "expired"
        assert _status(db_session, still_valid) == "active"
        assert _status(db_session, pending_past) == "pending"
        assert _status(db_session, closed_past) == "closed"
        assert activity.actions[0] == "permit_expiry_check"
        assert activity.actions[-1] == "permit_expiry_complete"

    def test_forced_failure_does_not_stop_the_sweep(self, db_session, lifecycle, monkeypatch):
        past = NOW - timedelta(hours=1)
        broken = create_permit(db_session, status="active", valid_to=past - timedelta(hours=1))
        healthy = create_permit(db_session, status="active", valid_to=past)

        real_expire = lifecycle.expire

        def flaky_expire(permit_id, now=None):
            if permit_id == broken.id:
                raise RuntimeError("database hiccup")
            return real_expire(permit_id, now=now)

        monkeypatch.setattr(lifecycle, "expire", flaky_expire)

        report = AutoExpiryScheduler(db_session, lifecycle).run(now=NOW)

        assert (report.found, report.updated, report.skipped) == (2, 1, 0)
        assert len(report.errors) == 1
        assert "database hiccup" in report.errors[0]
        assert _status(db_session, broken) == "active"
        assert _status(db_session, healthy) == "expired"

    def test_overlapping_sweep_counts_skipped(self, db_session, session_factory, clock, monkeypatch):
        permit = create_permit(db_session, status="active", valid_to=NOW - timedelta(minutes=5))
        lifecycle = PermitLifecycle(db_session, clock=clock)
        other_session = session_factory()
        other = PermitLifecycle(other_session, clock=clock)

        real_expire = lifecycle.expire

        def raced_expire(permit_id, now=None):
            # The other sweep wins between our select and our update
            other.expire(permit_id, now=now)
            return real_expire(permit_id, now=now)

        monkeypatch.setattr(lifecycle, "expire", raced_expire)

        report = AutoExpiryScheduler(db_session, lifecycle).run(now=NOW)
        other_session.close()

        assert (report.found, report.updated, report.skipped, report.errors) == (1, 0, 1, [])
        assert _status(db_session, permit) == "expired"

    def test_nothing_to_do(self, db_session, lifecycle):
        report = AutoExpiryScheduler(db_session, lifecycle).run(now=NOW)
        assert report.to_dict() == {"found": 0, "updated": 0, "skipped": 0, "errors": []}

    def test_uses_lifecycle_clock_by_default(self, db_session, lifecycle, clock):
        permit = create_permit(db_session, status="active", valid_to=NOW + timedelta(hours=1))
        clock.set(NOW + timedelta(hours=2))

        assert AutoExpiryScheduler(db_session, lifecycle).run().updated == 1
        assert _status(db_session, permit) == "expired"
