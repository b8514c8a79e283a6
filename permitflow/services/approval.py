"""Approval workflow: role-gated permit actions plus follow-up notifications.

The state change always commits first. Notifying the holder happens after
and is best-effort: a failure is logged and reported on the result, never
raised, and never undoes the decision.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from permitflow.core.auth import AuthContext, can_decide
from permitflow.core.errors import AuthenticationError, AuthorizationError
from permitflow.core.lifecycle import PermitLifecycle
from permitflow.db.models import Permit
from permitflow.services.notifications import NotificationDispatcher, DecisionNotification

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of a workflow action."""
    permit: Permit
    message: str
    notification: Optional[DecisionNotification] = None
    notification_error: Optional[str] = None


class ApprovalWorkflow:
    """Authorization and orchestration over the permit lifecycle."""

    def __init__(
        self,
        db: Session,
        lifecycle: PermitLifecycle,
        dispatcher: NotificationDispatcher,
    ):
        self.db = db
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher

    def approve(self, auth: Optional[AuthContext], permit_id) -> ActionResult:
        """
        Approve a pending permit and notify its holder.

        Raises:
            AuthenticationError: No caller
            AuthorizationError: Caller is not admin/manager
            NotFoundError, InvalidStateError: From the lifecycle
        """
        self._require_decider(auth)
        permit = self.lifecycle.approve(permit_id, auth.user_id)
        result = ActionResult(permit=permit, message="Permit approved successfully")
        self._notify(result, approved=True)
        return result

    def reject(
        self,
        auth: Optional[AuthContext],
        permit_id,
        reason: Optional[str] = None,
    ) -> ActionResult:
        """Reject a pending permit and notify its holder with the reason."""
        self._require_decider(auth)
        permit = self.lifecycle.reject(permit_id, reason=reason, actor_id=auth.user_id)
        result = ActionResult(permit=permit, message="Permit rejected")
        self._notify(result, approved=False, reason=permit.rejection_reason)
        return result

    def close(
        self,
        auth: Optional[AuthContext],
        permit_id,
        reason: Optional[str] = None,
    ) -> ActionResult:
        """Close an active permit. Holder or admin/manager only."""
        if auth is None:
            raise AuthenticationError("Not authenticated")
        permit = self.lifecycle.close(permit_id, auth, reason=reason)
        return ActionResult(permit=permit, message="Permit closed successfully")

    def start_work(
        self,
        *,
        link: Optional[str] = None,
        permit_id=None,
    ) -> datetime:
        """Record work start. No role restriction beyond the permit being active."""
        return self.lifecycle.record_work_start(permit_id, unique_link=link)

    def _require_decider(self, auth: Optional[AuthContext]) -> None:
        if auth is None:
            raise AuthenticationError("Unauthorized")
        if not can_decide(auth):
            raise AuthorizationError("Insufficient permissions")

    def _notify(self, result: ActionResult, approved: bool, reason: Optional[str] = None) -> None:
        try:
            result.notification = self.dispatcher.notify_decision(result.permit, approved, reason)
        except Exception as e:
            # The decision is already committed
            self.db.rollback()
            logger.exception(
                f"Failed to notify holder of permit {result.permit.ref_number} "
                f"({'approval' if approved else 'rejection'})"
            )
            result.notification_error = str(e)
