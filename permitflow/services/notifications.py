"""Notification dispatcher for email and push delivery.

Handles:
- Email queueing (approval, rejection, pending-approval alerts, reminders)
- Reminder de-duplication by structured key
- Push fan-out to subscribed devices with dead-endpoint pruning

Nothing here delivers email directly; entries are queued and drained by
``EmailQueueProcessor``.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Dict, Any, List, Iterable

from jinja2 import Environment, DictLoader, select_autoescape
from sqlalchemy.orm import Session

from permitflow.core.capabilities import (
    PushTransport,
    PushTarget,
    NullPushTransport,
    encode_payload,
)
from permitflow.core.clock import Clock, SystemClock
from permitflow.core.config import Settings, get_settings
from permitflow.core.lifecycle.states import PermitStatus
from permitflow.db.models import EmailQueueEntry, EmailStatus, Permit, PushSubscription
from permitflow.db.session import atomic
from permitflow.services.push_registry import PushSubscriptionRegistry

logger = logging.getLogger(__name__)


class EmailKind:
    """Template keys. Only ``PERMIT_EXPIRING`` is reminder-class."""
    PERMIT_APPROVED = "permit_approved"
    PERMIT_REJECTED = "permit_rejected"
    PERMIT_AWAITING_APPROVAL = "permit_awaiting_approval"
    PERMIT_EXPIRING = "permit_expiring"


EMAIL_SUBJECTS = {
    EmailKind.PERMIT_APPROVED: "Permit Approved: {ref_number}",
    EmailKind.PERMIT_REJECTED: "Permit Rejected: {ref_number}",
    EmailKind.PERMIT_AWAITING_APPROVAL: "Permit Awaiting Approval: {ref_number}",
    EmailKind.PERMIT_EXPIRING: "Permit Expiring Soon: {ref_number}",
}

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
<div style="max-width: 600px; margin: 0 auto; padding: 20px;">
<h2>{% block heading %}{% endblock %}</h2>
{% block content %}{% endblock %}
<p style="color: #6b7280; font-size: 12px;">This is an automated message from {{ app_name }}.</p>
</div>
</body>
</html>
"""

EMAIL_BODIES = {
    "layout.html": _LAYOUT,
    EmailKind.PERMIT_APPROVED: """{% extends "layout.html" %}
{% block heading %}Permit Approved{% endblock %}
{% block content %}
<p>Good news! Your permit has been approved and is now active.</p>
<p><strong>Reference:</strong> #{{ ref_number }}</p>
<p><strong>Valid:</strong> {{ valid_from or "N/A" }} to {{ valid_to or "N/A" }}</p>
{% if view_url %}<p><a href="{{ view_url }}">View your permit</a></p>{% endif %}
{% endblock %}
""",
    EmailKind.PERMIT_REJECTED: """{% extends "layout.html" %}
{% block heading %}Permit Update{% endblock %}
{% block content %}
<p>Your permit application has been reviewed.</p>
<p><strong>Reference:</strong> #{{ ref_number }}</p>
<p><strong>Status:</strong> Not approved at this time</p>
{% if reason %}<p><strong>Note:</strong> {{ reason }}</p>{% endif %}
<p>If you have questions, please contact the safety manager.</p>
{% endblock %}
""",
    EmailKind.PERMIT_AWAITING_APPROVAL: """{% extends "layout.html" %}
{% block heading %}Permit Awaiting Approval{% endblock %}
{% block content %}
<p>A permit is waiting for your decision.</p>
<p><strong>Reference:</strong> #{{ ref_number }}</p>
<p><strong>Holder:</strong> {{ holder_email or "Unknown" }}</p>
<p><a href="{{ approval_url }}">Review pending approvals</a></p>
{% if view_url %}<p><a href="{{ view_url }}">View the permit</a></p>{% endif %}
{% endblock %}
""",
    EmailKind.PERMIT_EXPIRING: """{% extends "layout.html" %}
{% block heading %}Permit Expiring Soon{% endblock %}
{% block content %}
<p>Permit #{{ ref_number }} expires in {{ days_until_expiry }} day(s).</p>
<p><strong>Expiry:</strong> {{ valid_to }}</p>
{% if view_url %}<p><a href="{{ view_url }}">View the permit</a></p>{% endif %}
{% endblock %}
""",
}

_templates = Environment(
    loader=DictLoader(EMAIL_BODIES),
    autoescape=select_autoescape(default=True, default_for_string=True),
)


def reminder_dedup_key(recipient: str, permit_ref: str, reminder_class: str) -> str:
    """Structured key identifying one reminder for one permit to one recipient."""
    return f"{reminder_class}:{permit_ref}:{recipient.strip().lower()}"


@dataclass
class PushDispatchResult:
    """Aggregate outcome of one push fan-out."""
    sent: int = 0
    failed: int = 0
    pruned: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "pruned": self.pruned,
            "errors": list(self.errors),
        }


@dataclass
class DecisionNotification:
    """What was queued/pushed after an approve or reject."""
    email_id: Optional[str] = None
    push: PushDispatchResult = field(default_factory=PushDispatchResult)


class NotificationDispatcher:
    """
    Decides what to send and to whom.
    """

    def __init__(
        self,
        db: Session,
        *,
        push_transport: Optional[PushTransport] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            db: Database session
            push_transport: Push delivery capability (no-op by default)
            clock: Time source
            settings: Application settings
        """
        self.db = db
        self.push_transport = push_transport or NullPushTransport()
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.registry = PushSubscriptionRegistry(db, clock=self.clock)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def enqueue_email(
        self,
        to_address: str,
        subject: str,
        body: str,
        *,
        dedup_key: Optional[str] = None,
    ) -> Optional[str]:
        """
        Write a pending queue entry.

        Args:
            to_address: Recipient
            subject: Subject line
            body: HTML body
            dedup_key: Set for reminder-class emails only; an entry with the
                same key created inside the dedup window suppresses this one

        Returns:
            The queue entry id, or None if the email was de-duplicated
        """
        now = self.clock.now()

        if dedup_key is not None:
            window_start = now - timedelta(hours=self.settings.reminder_dedup_hours)
            duplicate = (
                self.db.query(EmailQueueEntry.id)
                .filter(
                    EmailQueueEntry.dedup_key == dedup_key,
                    EmailQueueEntry.created_at >= window_start,
                )
                .first()
            )
            if duplicate:
                logger.debug(f"Skipping duplicate reminder {dedup_key}")
                return None

        with atomic(self.db):
            entry = EmailQueueEntry(
                id=uuid.uuid4(),
                to_address=to_address,
                subject=subject,
                body=body,
                status=EmailStatus.PENDING.value,
                dedup_key=dedup_key,
                created_at=now,
            )
            self.db.add(entry)

        logger.info(f"Queued email {entry.id} to {to_address}: {subject}")
        return str(entry.id)

    def render(self, kind: str, context: Dict[str, Any]) -> tuple[str, str]:
        """Render subject and body for a template key."""
        context = {"app_name": self.settings.app_name, **context}
        subject = EMAIL_SUBJECTS[kind].format(**context)
        body = _templates.get_template(kind).render(**context)
        return subject, body

    def notify_decision(
        self,
        permit: Permit,
        approved: bool,
        reason: Optional[str] = None,
    ) -> DecisionNotification:
        """
        Tell the holder a decision was made.

        Decision emails are never de-duplicated: each decision is its own event.
        """
        outcome = DecisionNotification()
        kind = EmailKind.PERMIT_APPROVED if approved else EmailKind.PERMIT_REJECTED
        context = self._permit_context(permit)
        context["reason"] = reason

        if permit.holder_email:
            subject, body = self.render(kind, context)
            outcome.email_id = self.enqueue_email(permit.holder_email, subject, body)
        else:
            logger.info(f"Permit {permit.ref_number} has no holder email, skipping {kind}")

        if permit.holder_id:
            subscriptions = self.registry.list(user_id=permit.holder_id)
            if subscriptions:
                outcome.push = self.dispatch_push(
                    {
                        "title": "Permit approved" if approved else "Permit not approved",
                        "body": f"Permit #{permit.ref_number}"
                        + (" is now active" if approved else (f": {reason}" if reason else " was rejected")),
                        "url": context.get("view_url") or self.settings.app_url,
                    },
                    subscriptions,
                )
        return outcome

    def notify_pending_approval(self, permit: Permit, lifecycle) -> int:
        """
        Queue an alert to every approval recipient for a pending permit.

        Runs at most once per pending period: the permit's ``notified_at`` flag
        is set afterwards and cleared again on rejection.

        Returns:
            Number of emails queued
        """
        if permit.status != PermitStatus.PENDING.value or permit.notified_at:
            return 0

        recipients = self.settings.approval_recipients_list
        if not recipients:
            return 0

        context = self._permit_context(permit)
        context["approval_url"] = f"{self.settings.app_url.rstrip('/')}/manager-approvals"
        subject, body = self.render(EmailKind.PERMIT_AWAITING_APPROVAL, context)

        queued = 0
        for recipient in recipients:
            try:
                self.enqueue_email(recipient, subject, body)
                queued += 1
            except Exception:
                logger.exception(f"Failed to queue approval notification to {recipient}")

        if queued:
            lifecycle.mark_approvers_notified(permit.id, recipients)
        return queued

    def queue_expiry_reminder(
        self,
        permit: Permit,
        recipient: str,
        reminder_class: str,
        days_until_expiry: int,
    ) -> Optional[str]:
        """Queue a reminder-class email, de-duplicated per recipient and permit."""
        context = self._permit_context(permit)
        context["days_until_expiry"] = days_until_expiry
        subject, body = self.render(EmailKind.PERMIT_EXPIRING, context)
        return self.enqueue_email(
            recipient,
            subject,
            body,
            dedup_key=reminder_dedup_key(recipient, permit.ref_number, reminder_class),
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def dispatch_push(
        self,
        payload: Dict[str, Any],
        subscriptions: Iterable[PushSubscription],
    ) -> PushDispatchResult:
        """
        Fan a payload out to every subscription.

        Attempts run concurrently on a bounded pool; there is no ordering
        between recipients. A 404/410 answer prunes the subscription. A
        failure for some recipients never raises.
        """
        result = PushDispatchResult()
        targets = [PushTarget(s.endpoint, s.p256dh, s.auth) for s in subscriptions]
        if not targets:
            return result

        body = encode_payload(payload)
        gone: List[str] = []

        pool_size = max(1, min(self.settings.push_pool_size, len(targets)))
        with ThreadPoolExecutor(max_workers=pool_size) as pool:
            futures = {pool.submit(self.push_transport.send, t, body): t for t in targets}
            for future in as_completed(futures):
                target = futures[future]
                try:
                    response = future.result()
                except Exception as e:
                    result.failed += 1
                    result.errors.append({"endpoint": target.endpoint, "error": str(e)})
                    logger.warning(f"Push delivery error for {target.endpoint[:60]}: {e}")
                    continue

                if response.ok:
                    result.sent += 1
                    continue

                result.failed += 1
                result.errors.append({
                    "endpoint": target.endpoint,
                    "status": response.status_code,
                    "error": response.reason or f"HTTP {response.status_code}",
                })
                if response.gone:
                    gone.append(target.endpoint)

        # Pruning touches the session, so it stays on this thread
        for endpoint in gone:
            try:
                result.pruned += self.registry.delete(endpoint)
            except Exception as e:
                logger.warning(f"Failed to prune push subscription: {e}")
                result.errors.append({"endpoint": endpoint, "error": f"prune failed: {e}"})

        logger.info(
            f"Push dispatch: sent={result.sent} failed={result.failed} pruned={result.pruned}"
        )
        return result

    def broadcast_push(self, payload: Dict[str, Any]) -> PushDispatchResult:
        """Send a payload to every stored subscription."""
        return self.dispatch_push(payload, self.registry.list())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _permit_context(self, permit: Permit) -> Dict[str, Any]:
        base_url = self.settings.app_url.rstrip("/")
        view_url = None
        if permit.unique_link:
            view_url = f"{base_url}/view-permit-public?link={permit.unique_link}"
        return {
            "ref_number": permit.ref_number,
            "holder_email": permit.holder_email,
            "valid_from": permit.valid_from.strftime("%Y-%m-%d %H:%M") if permit.valid_from else None,
            "valid_to": permit.valid_to.strftime("%Y-%m-%d %H:%M") if permit.valid_to else None,
            "view_url": view_url,
        }
