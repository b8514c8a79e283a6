"""Automatic expiry sweep.

Moves issued/active permits whose ``valid_to`` has passed to ``expired``.
Each permit is transitioned independently through the lifecycle, so
overlapping sweeps are safe: a permit already expired by another run is
skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List

from sqlalchemy.orm import Session

from permitflow.core.capabilities import ActivityLogger, NullActivityLogger
from permitflow.core.errors import InvalidStateError
from permitflow.core.lifecycle import PermitLifecycle, PermitStatus

logger = logging.getLogger(__name__)


@dataclass
class ExpiryReport:
    found: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class AutoExpiryScheduler:

    def __init__(
        self,
        db: Session,
        lifecycle: PermitLifecycle,
        *,
        activity: Optional[ActivityLogger] = None,
    ):
        self.db = db
        self.lifecycle = lifecycle
        self.activity = activity or NullActivityLogger()

    def run(self, now: Optional[datetime] = None) -> ExpiryReport:
        """
        Expire every eligible permit.

        Args:
            now: Sweep reference time (the lifecycle clock by default)

        Returns:
            ExpiryReport with found/updated/skipped counts and error messages
        """
        now = now or self.lifecycle.clock.now()
        report = ExpiryReport()

        self.activity.log("permit_expiry_check", "system", None, None, "Starting automatic permit expiry check.")

        candidates = [(p.id, p.ref_number) for p in self.lifecycle.find_expirable(now)]
        report.found = len(candidates)

        for permit_id, ref in candidates:
            try:
                self.lifecycle.expire(permit_id, now=now)
                report.updated += 1
            except InvalidStateError as e:
                if e.current_status == PermitStatus.EXPIRED.value:
                    # Another sweep got there first
                    report.skipped += 1
                    logger.debug(f"Permit {ref} already expired, skipping")
                    continue
                self._record_failure(report, permit_id, ref, e)
            except Exception as e:
                self._record_failure(report, permit_id, ref, e)

        if report.found == 0:
            summary = "Automatic permit expiry completed. No permits found requiring expiration."
        else:
            summary = (
                f"Automatic permit expiry completed. {report.updated} of {report.found} "
                f"permit(s) expired successfully."
            )
        self.activity.log("permit_expiry_complete", "system", None, None, summary)
        logger.info(summary)
        return report

    def _record_failure(self, report: ExpiryReport, permit_id, ref: str, error: Exception) -> None:
        logger.error(f"Unable to expire permit {ref}: {error}")
        report.errors.append(f"[{permit_id}] {error}")
        self.activity.log(
            "permit_expiry_failed",
            "system",
            "permit",
            str(permit_id),
            f"Unable to update permit status: {error}",
        )
