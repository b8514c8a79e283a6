"""Tests for the approval workflow."""

import pytest

from permitflow.core.auth import AuthContext, Role
from permitflow.core.errors import (
    AlreadyClosedError,
    AuthenticationError,
    AuthorizationError,
    InvalidStateError,
)
from permitflow.db.models import EmailQueueEntry, Permit, PermitEvent
from permitflow.services.approval import ApprovalWorkflow

from tests.factories import create_permit

MANAGER = AuthContext("manager-a", Role.MANAGER)
ADMIN = AuthContext("admin-1", Role.ADMIN)
WORKER = AuthContext("worker-1", Role.USER)


@pytest.fixture
def workflow(db_session, lifecycle, dispatcher):
    return ApprovalWorkflow(db_session, lifecycle, dispatcher)


class TestApprove:

    def test_pending_permit_scenario(self, db_session, workflow):
        """pending permit approved by a manager: active, one event, one email."""
        permit = create_permit(db_session, status="pending", holder_email="holder@example.com")

        result = workflow.approve(MANAGER, permit.id)

        assert result.permit.status == "active"
        assert result.permit.approved_by == "manager-a"
        assert result.notification_error is None
        events = db_session.query(PermitEvent).filter(PermitEvent.permit_id == permit.id).all()
        assert [e.type for e in events] == ["permit_approved"]
        emails = db_session.query(EmailQueueEntry).all()
        assert [e.to_address for e in emails] == ["holder@example.com"]

    def test_user_role_is_forbidden(self, db_session, workflow):
        permit = create_permit(db_session, status="pending")

        with pytest.raises(AuthorizationError):
            workflow.approve(WORKER, permit.id)

        db_session.expire_all()
        assert db_session.get(Permit, permit.id).status == "pending"
        assert db_session.query(EmailQueueEntry).count() == 0

    def test_anonymous_is_unauthenticated(self, db_session, workflow):
        permit = create_permit(db_session, status="pending")
        with pytest.raises(AuthenticationError):
            workflow.approve(None, permit.id)

    def test_non_pending_is_invalid(self, db_session, workflow):
        permit = create_permit(db_session, status="active")
        with pytest.raises(InvalidStateError):
            workflow.approve(ADMIN, permit.id)

    def test_notification_failure_keeps_decision(self, db_session, workflow, monkeypatch):
        permit = create_permit(db_session, status="pending")

        def broken(*args, **kwargs):
            raise RuntimeError("template store unavailable")

        monkeypatch.setattr(workflow.dispatcher, "notify_decision", broken)

        result = workflow.approve(MANAGER, permit.id)

        assert result.notification_error == "template store unavailable"
        db_session.expire_all()
        assert db_session.get(Permit, permit.id).status == "active"


class TestReject:

    def test_reject_with_reason(self, db_session, workflow):
        permit = create_permit(db_session, status="pending")

        result = workflow.reject(ADMIN, permit.id, reason="No gas test")

        assert result.permit.status == "rejected"
        email = db_session.query(EmailQueueEntry).one()
        assert "No gas test" in email.body

    def test_user_role_is_forbidden(self, db_session, workflow):
        permit = create_permit(db_session, status="pending")
        with pytest.raises(AuthorizationError):
            workflow.reject(WORKER, permit.id)


class TestClose:

    def test_repeated_close_fails_already_closed(self, db_session, workflow):
        permit = create_permit(db_session, status="active", holder_id="worker-1")

        assert workflow.close(WORKER, permit.id).permit.status == "closed"
        with pytest.raises(AlreadyClosedError):
            workflow.close(WORKER, permit.id)

    def test_anonymous(self, db_session, workflow):
        permit = create_permit(db_session, status="active")
        with pytest.raises(AuthenticationError):
            workflow.close(None, permit.id)


def test_start_work_by_link(db_session, workflow):
    permit = create_permit(db_session, status="active")
    first = workflow.start_work(link=permit.unique_link)
    assert workflow.start_work(permit_id=permit.id) == first
