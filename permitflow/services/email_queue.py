"""Email queue processor.

Drains pending ``email_queue`` rows in bounded batches and hands each one to
the mail channel. Rows are claimed with a conditional update before any send
so overlapping processor runs never deliver the same row twice.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, List

from sqlalchemy import or_
from sqlalchemy.orm import Session

from permitflow.core.capabilities import MailChannel
from permitflow.core.clock import Clock, SystemClock
from permitflow.core.config import Settings, get_settings
from permitflow.db.models import EmailQueueEntry, EmailStatus
from permitflow.db.session import atomic

logger = logging.getLogger(__name__)


@dataclass
class QueueReport:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class EmailQueueProcessor:
    """
    Batch worker for the email queue.

    ``sent`` and ``failed`` are terminal; a failed row is never retried here.
    Re-delivery is a fresh enqueue.

    The processor commits on its session, so give it a session of its own.
    """

    def __init__(
        self,
        db: Session,
        mail_channel: MailChannel,
        *,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.mail_channel = mail_channel
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    def process(self, limit: Optional[int] = None) -> QueueReport:
        """
        Claim and deliver up to ``limit`` pending emails, oldest first.

        Before each send the processor renews its claim. A row another
        processor has taken over in the meantime is skipped and left out of
        the report.

        Returns:
            QueueReport with processed/sent/failed counts and error details
        """
        limit = max(1, limit or self.settings.email_queue_limit)
        report = QueueReport()

        token = str(uuid.uuid4())
        claimed = self.claim(token, limit)
        if not claimed:
            return report

        for entry in claimed:
            if not self.renew(entry, token):
                logger.warning(f"Email {entry.id} was reclaimed by another processor, skipping")
                continue

            report.processed += 1
            try:
                delivered = self.mail_channel.send(entry.to_address, entry.subject, entry.body)
            except Exception as e:
                logger.warning(f"Email {entry.id} to {entry.to_address} failed: {e}")
                if self._finish(entry, token, EmailStatus.FAILED, str(e)):
                    report.failed += 1
                    report.errors.append(f"[{entry.id}] {e}")
                continue

            if delivered:
                if self._finish(entry, token, EmailStatus.SENT):
                    report.sent += 1
            else:
                message = f"Mail channel returned false for email {entry.id}"
                if self._finish(entry, token, EmailStatus.FAILED, message):
                    report.failed += 1
                    report.errors.append(message)

        logger.info(
            f"Email queue batch: processed={report.processed} sent={report.sent} failed={report.failed}"
        )
        return report

    def claim(self, token: str, limit: int) -> List[EmailQueueEntry]:
        """
        Atomically take ownership of up to ``limit`` pending rows.

        A row is claimable when it is pending and either unclaimed or held by a
        claim older than the configured TTL (a worker that died mid-batch).
        Each row is claimed by its own conditional update; a row another
        processor took in the meantime simply fails the condition.
        """
        now = self.clock.now()
        stale_before = now - timedelta(seconds=self.settings.email_claim_ttl_seconds)
        claimable = (
            EmailQueueEntry.status == EmailStatus.PENDING.value,
            or_(
                EmailQueueEntry.claim_token.is_(None),
                EmailQueueEntry.claimed_at < stale_before,
            ),
        )

        candidate_ids = [
            row.id
            for row in self.db.query(EmailQueueEntry.id)
            .filter(*claimable)
            .order_by(EmailQueueEntry.created_at.asc(), EmailQueueEntry.id.asc())
            .limit(limit)
            .all()
        ]
        # End the read transaction before the claim writes
        self.db.commit()

        with atomic(self.db):
            for entry_id in candidate_ids:
                (
                    self.db.query(EmailQueueEntry)
                    .filter(EmailQueueEntry.id == entry_id, *claimable)
                    .update(
                        {"claim_token": token, "claimed_at": now},
                        synchronize_session=False,
                    )
                )

        return (
            self.db.query(EmailQueueEntry)
            .filter(
                EmailQueueEntry.claim_token == token,
                EmailQueueEntry.status == EmailStatus.PENDING.value,
            )
            .populate_existing()
            .order_by(EmailQueueEntry.created_at.asc(), EmailQueueEntry.id.asc())
            .all()
        )

    def renew(self, entry: EmailQueueEntry, token: str) -> bool:
        """
        Confirm ownership of ``entry`` and refresh every row still held by ``token``.

        Refreshing the whole remainder of the batch keeps rows that are still
        waiting their turn from going stale behind a slow send.

        Returns:
            False if another processor has reclaimed ``entry``
        """
        now = self.clock.now()
        owned = (
            EmailQueueEntry.claim_token == token,
            EmailQueueEntry.status == EmailStatus.PENDING.value,
        )
        with atomic(self.db):
            updated = (
                self.db.query(EmailQueueEntry)
                .filter(EmailQueueEntry.id == entry.id, *owned)
                .update({"claimed_at": now}, synchronize_session=False)
            )
            if updated == 1:
                (
                    self.db.query(EmailQueueEntry)
                    .filter(*owned)
                    .update({"claimed_at": now}, synchronize_session=False)
                )
        return updated == 1

    def _finish(
        self,
        entry: EmailQueueEntry,
        token: str,
        status: EmailStatus,
        error: Optional[str] = None,
    ) -> bool:
        values = {"status": status.value, "error_message": error}
        if status is EmailStatus.SENT:
            values["sent_at"] = self.clock.now()
        with atomic(self.db):
            updated = (
                self.db.query(EmailQueueEntry)
                .filter(
                    EmailQueueEntry.id == entry.id,
                    EmailQueueEntry.claim_token == token,
                    EmailQueueEntry.status == EmailStatus.PENDING.value,
                )
                .update(values, synchronize_session=False)
            )
        if updated != 1:
            logger.warning(f"Email {entry.id} was reclaimed before it could be marked {status.value}")
            return False
        return True
