"""Permit lifecycle service.

Persists state machine transitions. Every status change writes the permit
row and appends its event inside one transaction; the row update is
conditional on the status that was read, so two writers racing on the same
permit cannot both succeed.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List, Union
from uuid import UUID

from sqlalchemy.orm import Session

from permitflow.core.auth import AuthContext, can_close
from permitflow.core.capabilities import ActivityLogger, NullActivityLogger
from permitflow.core.clock import Clock, SystemClock
from permitflow.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from permitflow.db.models import Permit, PermitEvent
from permitflow.db.session import atomic
from .machine import PermitStateMachine
from .states import EXPIRABLE_STATES, PermitStatus, PermitTransition, TransitionRule

logger = logging.getLogger(__name__)

PermitId = Union[str, UUID]

# Actor recorded on events written by the expiry sweep
SYSTEM_ACTOR = "auto-system"


def coerce_permit_id(permit_id: PermitId) -> UUID:
    """Parse a permit id from a request or job argument."""
    if isinstance(permit_id, UUID):
        return permit_id
    try:
        return UUID(str(permit_id).strip())
    except (ValueError, AttributeError):
        raise ValidationError(f"Invalid permit id: {permit_id!r}")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class PermitLifecycle:
    """
    Owns every status-changing operation on permits.

    Handles:
    - approve / reject of pending permits
    - close of active permits by holder or decision makers
    - expiry of issued/active permits past their validity window
    - idempotent work-start recording
    - the pending-approval notification flag
    """

    def __init__(
        self,
        db: Session,
        *,
        clock: Optional[Clock] = None,
        activity: Optional[ActivityLogger] = None,
    ):
        """
        Initialize the lifecycle service.

        Args:
            db: Database session
            clock: Time source (wall clock by default)
            activity: Activity logger (no-op by default)
        """
        self.db = db
        self.clock = clock or SystemClock()
        self.activity = activity or NullActivityLogger()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, permit_id: PermitId) -> Permit:
        """Get a permit by id or raise NotFoundError."""
        pid = coerce_permit_id(permit_id)
        permit = self.db.query(Permit).filter(Permit.id == pid).first()
        if not permit:
            raise NotFoundError(f"Permit {pid} not found")
        return permit

    def get_by_link(self, unique_link: str) -> Permit:
        """Get a permit by its public access token."""
        permit = self.db.query(Permit).filter(Permit.unique_link == unique_link).first()
        if not permit:
            raise NotFoundError("Permit not found")
        return permit

    def list_events(self, permit_id: PermitId) -> List[PermitEvent]:
        pid = coerce_permit_id(permit_id)
        return (
            self.db.query(PermitEvent)
            .filter(PermitEvent.permit_id == pid)
            .order_by(PermitEvent.created_at.asc())
            .all()
        )

    def find_expirable(self, now: datetime) -> List[Permit]:
        """Permits in issued/active whose validity window has elapsed."""
        return (
            self.db.query(Permit)
            .filter(
                Permit.status.in_([s.value for s in EXPIRABLE_STATES]),
                Permit.valid_to.isnot(None),
                Permit.valid_to < now,
            )
            .order_by(Permit.valid_to.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(self, permit_id: PermitId, approver_id: str) -> Permit:
        """
        Approve a pending permit, making it active.

        Raises:
            NotFoundError: If the permit does not exist
            InvalidStateError: If the permit is not pending
        """
        permit = self._apply(
            permit_id,
            PermitTransition.APPROVE,
            actor=approver_id,
            changes=lambda p, now: {
                "approved_by": approver_id,
                "approved_at": p.approved_at or now,
            },
            payload=lambda p, now: {"approved_by": approver_id},
        )
        self.activity.log(
            "permit_approved",
            "approval",
            "permit",
            str(permit.id),
            f"Permit {permit.ref_number} approved by {approver_id}",
        )
        return permit

    def reject(
        self,
        permit_id: PermitId,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Permit:
        """
        Reject a pending permit.

        Clears the pending-approval notification flag so a resubmitted permit
        notifies approvers again.

        Raises:
            NotFoundError: If the permit does not exist
            InvalidStateError: If the permit is not pending
        """
        reason = (reason or "").strip() or None
        permit = self._apply(
            permit_id,
            PermitTransition.REJECT,
            actor=actor_id,
            changes=lambda p, now: {
                "rejection_reason": reason,
                "rejected_by": actor_id,
                "rejected_at": now,
                "notified_at": None,
            },
            payload=lambda p, now: {"reason": reason},
        )
        reason_text = f"Reason: {reason}" if reason else "No reason provided"
        self.activity.log(
            "permit_rejected",
            "approval",
            "permit",
            str(permit.id),
            f"Permit {permit.ref_number} rejected by {actor_id}. {reason_text}",
        )
        return permit

    def close(
        self,
        permit_id: PermitId,
        auth: AuthContext,
        reason: Optional[str] = None,
    ) -> Permit:
        """
        Close an active permit.

        Raises:
            NotFoundError: If the permit does not exist
            AuthorizationError: If the caller is neither holder nor admin/manager
            AlreadyClosedError: If the permit is already closed
            InvalidStateError: If the permit is not active
        """
        permit = self.get(permit_id)
        if not can_close(auth, permit.holder_id):
            raise AuthorizationError("You do not have permission to close this permit")

        reason = (reason or "").strip()
        permit = self._apply(
            permit.id,
            PermitTransition.CLOSE,
            actor=auth.user_id,
            changes=lambda p, now: {
                "closed_by": auth.user_id,
                "closed_at": p.closed_at or now,
                "closure_reason": reason,
            },
            payload=lambda p, now: {"reason": reason},
        )
        self.activity.log(
            "permit_closed",
            "permit",
            "permit",
            str(permit.id),
            f"Closed permit #{permit.ref_number}" + (f": {reason}" if reason else ""),
        )
        return permit

    def expire(self, permit_id: PermitId, now: Optional[datetime] = None) -> Permit:
        """
        Move an issued/active permit past its validity window to expired.

        Raises:
            NotFoundError: If the permit does not exist
            InvalidStateError: If the permit is not issued/active, or still valid
        """
        now = now or self.clock.now()

        def changes(p: Permit, _now: datetime) -> Dict[str, Any]:
            if p.valid_to is None or p.valid_to >= now:
                raise InvalidStateError(
                    f"Permit {p.ref_number} is still within its validity window",
                    current_status=p.status,
                    transition=PermitTransition.EXPIRE.value,
                )
            return {}

        permit = self._apply(
            permit_id,
            PermitTransition.EXPIRE,
            actor=SYSTEM_ACTOR,
            changes=changes,
            payload=lambda p, _now: {
                "old": p.status,
                "new": PermitStatus.EXPIRED.value,
                "reason": "auto-expired",
                "valid_to": _iso(p.valid_to),
            },
            now=now,
        )
        self.activity.log(
            "permit_expired",
            "system",
            "permit",
            str(permit.id),
            f"Permit {permit.ref_number} automatically expired after exceeding its valid window.",
        )
        return permit

    def record_work_start(
        self,
        permit_id: Optional[PermitId] = None,
        *,
        unique_link: Optional[str] = None,
    ) -> datetime:
        """
        Record when work started on an active permit.

        Idempotent: a second call returns the stored timestamp without writing.

        Returns:
            The work start timestamp

        Raises:
            ValidationError: If neither a permit id nor a link is given
            NotFoundError: If the permit does not exist
            InvalidStateError: If work has not started and the permit is not active
        """
        if unique_link:
            permit = self.get_by_link(unique_link)
        elif permit_id:
            permit = self.get(permit_id)
        else:
            raise ValidationError("Missing link or permit_id")

        if permit.work_started_at:
            return permit.work_started_at

        if permit.status != PermitStatus.ACTIVE.value:
            raise InvalidStateError(
                "Permit is not active",
                current_status=permit.status,
                transition="start_work",
            )

        now = self.clock.now()
        with atomic(self.db):
            updated = (
                self.db.query(Permit)
                .filter(
                    Permit.id == permit.id,
                    Permit.status == PermitStatus.ACTIVE.value,
                    Permit.work_started_at.is_(None),
                )
                .update(
                    {"work_started_at": now, "updated_at": now},
                    synchronize_session=False,
                )
            )
            if updated == 1:
                self.db.add(self._event(permit.id, "work_started", None, {"work_started_at": now.isoformat()}, now))

        self.db.refresh(permit)
        if updated != 1:
            # Lost a race with another caller
            if permit.work_started_at:
                return permit.work_started_at
            raise InvalidStateError(
                "Permit is not active",
                current_status=permit.status,
                transition="start_work",
            )

        self.activity.log(
            "work_started",
            "permit",
            "permit",
            str(permit.id),
            "Work started recorded",
        )
        return permit.work_started_at

    def mark_approvers_notified(self, permit_id: PermitId, recipients: List[str]) -> bool:
        """
        Set the pending-approval notification flag and log the event.

        Returns:
            False if the permit left pending or was already flagged
        """
        pid = coerce_permit_id(permit_id)
        now = self.clock.now()
        with atomic(self.db):
            updated = (
                self.db.query(Permit)
                .filter(
                    Permit.id == pid,
                    Permit.status == PermitStatus.PENDING.value,
                    Permit.notified_at.is_(None),
                )
                .update({"notified_at": now}, synchronize_session=False)
            )
            if updated == 1:
                self.db.add(self._event(
                    pid,
                    "notification_queued",
                    "system",
                    {"kind": "pending_approval_alert", "recipients": recipients},
                    now,
                ))
        return updated == 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        permit_id: PermitId,
        transition: PermitTransition,
        *,
        actor: Optional[str],
        changes,
        payload,
        now: Optional[datetime] = None,
    ) -> Permit:
        """Validate and persist one transition together with its event."""
        pid = coerce_permit_id(permit_id)
        now = now or self.clock.now()

        with atomic(self.db):
            permit = (
                self.db.query(Permit)
                .filter(Permit.id == pid)
                .populate_existing()
                .with_for_update()
                .first()
            )
            if not permit:
                raise NotFoundError(f"Permit {pid} not found")

            machine = PermitStateMachine.from_value(pid, permit.status)
            rule: TransitionRule = machine.transition(transition)

            values = dict(changes(permit, now))
            event_payload = payload(permit, now)
            values.update(status=rule.to_state.value, updated_at=now)

            updated = (
                self.db.query(Permit)
                .filter(Permit.id == pid, Permit.status == rule.from_state.value)
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                current = (
                    self.db.query(Permit.status)
                    .filter(Permit.id == pid)
                    .scalar()
                )
                raise InvalidStateError(
                    f"Permit {pid} changed status concurrently",
                    current_status=current,
                    transition=transition.value,
                )

            self.db.add(self._event(pid, rule.event_type, actor, event_payload, now))

        self.db.refresh(permit)
        logger.info(
            f"Permit {permit.ref_number} {rule.from_state.value} -> {rule.to_state.value} "
            f"({transition.value}, actor={actor})"
        )
        return permit

    def _event(
        self,
        permit_id: UUID,
        event_type: str,
        actor: Optional[str],
        payload: Dict[str, Any],
        now: datetime,
    ) -> PermitEvent:
        return PermitEvent(
            id=uuid.uuid4(),
            permit_id=permit_id,
            type=event_type,
            actor=actor,
            payload=payload or {},
            created_at=now,
        )
