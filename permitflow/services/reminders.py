"""Expiry reminders by email and push."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from permitflow.core.lifecycle import PermitStatus
from permitflow.db.models import Permit
from permitflow.services.notifications import NotificationDispatcher, PushDispatchResult

logger = logging.getLogger(__name__)

REMINDER_24H = "24h_expiry"
REMINDER_7D = "7d_expiry"


@dataclass
class ReminderReport:
    """Counts for one email reminder run."""
    permits: int = 0
    queued: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "permits": self.permits,
            "queued": self.queued,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class ExpiryReminderService:
    """
    Warns ahead of permit expiry.

    Email reminders go to the configured reminder recipients in two classes:
    permits expiring within 24 hours, and permits expiring between 24 hours
    and 7 days out. Each (class, permit, recipient) is sent at most once per
    de-duplication window. Push reminders cover the next hour and go to every
    subscribed device.
    """

    def __init__(self, db: Session, dispatcher: NotificationDispatcher):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = dispatcher.settings
        self.clock = dispatcher.clock

    def send_email_reminders(self, now: Optional[datetime] = None) -> ReminderReport:
        now = now or self.clock.now()
        report = ReminderReport()

        recipients = self.settings.reminder_recipients_list
        if not recipients:
            logger.info("No reminder recipients configured, skipping email reminders")
            return report

        day = now + timedelta(hours=24)
        week = now + timedelta(days=7)

        windows = [
            (REMINDER_24H, self._expiring_between(now, day)),
            (REMINDER_7D, self._expiring_between(day, week, include_start=False)),
        ]

        for reminder_class, permits in windows:
            logger.info(f"Found {len(permits)} permit(s) for {reminder_class} reminders")
            for permit in permits:
                report.permits += 1
                days = self._days_until(permit.valid_to, now) if reminder_class == REMINDER_7D else 1
                for recipient in recipients:
                    try:
                        entry_id = self.dispatcher.queue_expiry_reminder(
                            permit, recipient, reminder_class, days
                        )
                    except Exception as e:
                        self.db.rollback()
                        logger.error(f"Failed to queue {reminder_class} reminder for {permit.ref_number} to {recipient}: {e}")
                        report.errors.append(f"[{permit.ref_number}] {recipient}: {e}")
                        continue
                    if entry_id is None:
                        report.skipped += 1
                    else:
                        report.queued += 1

        logger.info(
            f"Email reminders: permits={report.permits} queued={report.queued} "
            f"skipped={report.skipped} errors={len(report.errors)}"
        )
        return report

    def send_push_reminders(self, now: Optional[datetime] = None) -> PushDispatchResult:
        """Push an "expiring soon" notice for every permit expiring within the hour."""
        now = now or self.clock.now()
        permits = self._expiring_between(now, now + timedelta(hours=1))
        result = PushDispatchResult()
        if not permits:
            return result

        base_url = self.settings.app_url.rstrip("/")
        for permit in permits:
            payload = {
                "title": "Permit expiring soon",
                "body": f"Ref {permit.ref_number} expires at {permit.valid_to.strftime('%Y-%m-%d %H:%M')}",
                "url": f"{base_url}/?form={permit.id}",
            }
            outcome = self.dispatcher.broadcast_push(payload)
            result.sent += outcome.sent
            result.failed += outcome.failed
            result.pruned += outcome.pruned
            result.errors.extend(outcome.errors)
        return result

    def broadcast_test_push(self, message: Optional[str] = None) -> PushDispatchResult:
        payload = {
            "title": "Test notification",
            "body": message or f"Test push from {self.settings.app_name}",
            "url": self.settings.app_url,
        }
        return self.dispatcher.broadcast_push(payload)

    def _expiring_between(
        self,
        start: datetime,
        end: datetime,
        include_start: bool = True,
    ) -> List[Permit]:
        lower = Permit.valid_to >= start if include_start else Permit.valid_to > start
        return (
            self.db.query(Permit)
            .filter(
                Permit.status.in_([PermitStatus.ISSUED.value, PermitStatus.ACTIVE.value]),
                Permit.valid_to.isnot(None),
                lower,
                Permit.valid_to <= end,
            )
            .order_by(Permit.valid_to.asc())
            .all()
        )

    @staticmethod
    def _days_until(valid_to: datetime, now: datetime) -> int:
        hours = (valid_to - now).total_seconds() / 3600
        return max(1, math.ceil(hours / 24))
