"""Batch jobs shared by the CLI and the Celery tasks.

Each job takes an open session, runs one pass and returns a summary dict
with a ``failed`` count; the caller decides how to report it.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from permitflow.core.capabilities import (
    LoggingActivityLogger,
    MailChannel,
    PushTransport,
    build_mail_channel,
    build_push_transport,
)
from permitflow.core.clock import Clock, SystemClock
from permitflow.core.config import Settings, get_settings
from permitflow.core.lifecycle import PermitLifecycle, PermitStatus
from permitflow.db.models import Permit
from permitflow.services.email_queue import EmailQueueProcessor
from permitflow.services.expiry import AutoExpiryScheduler
from permitflow.services.notifications import NotificationDispatcher
from permitflow.services.reminders import ExpiryReminderService

logger = logging.getLogger(__name__)


def expire_permits(db: Session, *, clock: Optional[Clock] = None) -> Dict[str, Any]:
    clock = clock or SystemClock()
    activity = LoggingActivityLogger()
    lifecycle = PermitLifecycle(db, clock=clock, activity=activity)
    report = AutoExpiryScheduler(db, lifecycle, activity=activity).run()
    summary = report.to_dict()
    summary["failed"] = len(report.errors)
    return summary


def process_email_queue(
    db: Session,
    *,
    limit: Optional[int] = None,
    mail_channel: Optional[MailChannel] = None,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    settings = settings or get_settings()
    mail_channel = mail_channel or build_mail_channel(settings)
    if mail_channel is None:
        # Leave the queue untouched; sent and failed rows are terminal
        message = "Mail channel not configured (set PERMITFLOW_SMTP_HOST)"
        logger.error(f"Email queue not processed: {message}")
        return {"processed": 0, "sent": 0, "failed": 1, "errors": [message]}

    processor = EmailQueueProcessor(
        db,
        mail_channel,
        clock=clock,
        settings=settings,
    )
    return processor.process(limit=limit).to_dict()


def send_reminders(
    db: Session,
    *,
    push_transport: Optional[PushTransport] = None,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Pending-approval alerts, expiry emails and expiry pushes in one pass.
    
    Returns:
        Summary with per-channel sections and the total ``failed`` count
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    dispatcher = NotificationDispatcher(
        db,
        push_transport=push_transport or build_push_transport(settings),
        clock=clock,
        settings=settings,
    )
    lifecycle = PermitLifecycle(db, clock=clock, activity=LoggingActivityLogger())
    
    approvals_queued = 0
    approval_errors = []
    pending = (
        db.query(Permit)
        .filter(Permit.status == PermitStatus.PENDING.value, Permit.notified_at.is_(None))
        .order_by(Permit.created_at.asc())
        .all()
    )
    for permit in pending:
        try:
            approvals_queued += dispatcher.notify_pending_approval(permit, lifecycle)
        except Exception as e:
            db.rollback()
            logger.error(f"Pending-approval alert failed for {permit.ref_number}: {e}")
            approval_errors.append(f"[{permit.ref_number}] {e}")
    
    service = ExpiryReminderService(db, dispatcher)
    now = clock.now()
    email = service.send_email_reminders(now)
    push = service.send_push_reminders(now)
    
    return {
        "approval_alerts": {"queued": approvals_queued, "errors": approval_errors},
        "email": email.to_dict(),
        "push": push.to_dict(),
        "failed": len(approval_errors) + len(email.errors) + push.failed,
    }


def push_test(
    db: Session,
    message: Optional[str] = None,
    *,
    push_transport: Optional[PushTransport] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    settings = settings or get_settings()
    dispatcher = NotificationDispatcher(
        db,
        push_transport=push_transport or build_push_transport(settings),
        settings=settings,
    )
    result = ExpiryReminderService(db, dispatcher).broadcast_test_push(message)
    return result.to_dict()
