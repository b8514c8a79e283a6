"""Push subscription registry.

Idempotent subscribe/unsubscribe keyed by the sha256 of the endpoint URL.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from permitflow.core.clock import Clock, SystemClock
from permitflow.core.errors import ValidationError
from permitflow.db.models import PushSubscription
from permitflow.db.session import atomic

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


def endpoint_hash(endpoint: str) -> str:
    """Deterministic natural key for a push endpoint."""
    return hashlib.sha256(endpoint.encode("utf-8")).hexdigest()


@dataclass
class UpsertResult:
    id: str
    action: str  # "created" | "updated"


class PushSubscriptionRegistry:
    """Stores at most one subscription row per endpoint."""

    def __init__(self, db: Session, *, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def upsert(
        self,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_id: Optional[str] = None,
    ) -> UpsertResult:
        """
        Create or refresh the subscription for an endpoint.

        Keys are replaced on every call since browsers rotate them; ``user_id``
        is only overwritten when one is given.

        Returns:
            UpsertResult with the row id and whether it was created or updated

        Raises:
            ValidationError: If the endpoint or keys are missing or oversized
        """
        endpoint = (endpoint or "").strip()
        p256dh = p256dh or ""
        auth = auth or ""
        if not endpoint or not p256dh or not auth:
            raise ValidationError("Missing endpoint or keys")
        if len(p256dh) > MAX_KEY_LENGTH or len(auth) > MAX_KEY_LENGTH:
            raise ValidationError("Key length too long")

        key = endpoint_hash(endpoint)
        now = self.clock.now()

        existing = self._find(key)
        if existing is None:
            try:
                with atomic(self.db):
                    row = PushSubscription(
                        id=uuid.uuid4(),
                        user_id=user_id,
                        endpoint=endpoint,
                        endpoint_hash=key,
                        p256dh=p256dh,
                        auth=auth,
                        created_at=now,
                        updated_at=now,
                    )
                    self.db.add(row)
                logger.info(f"Push subscription created ({key[:12]})")
                return UpsertResult(id=str(row.id), action="created")
            except IntegrityError:
                # Another request inserted the same endpoint first
                existing = self._find(key)
                if existing is None:
                    raise

        with atomic(self.db):
            existing.p256dh = p256dh
            existing.auth = auth
            if user_id is not None:
                existing.user_id = user_id
            existing.updated_at = now
        logger.info(f"Push subscription updated ({key[:12]})")
        return UpsertResult(id=str(existing.id), action="updated")

    def delete(self, endpoint: str) -> int:
        """
        Remove the subscription for an endpoint.

        Returns:
            Number of rows removed (0 or 1). A missing row is not an error.
        """
        endpoint = (endpoint or "").strip()
        if not endpoint:
            raise ValidationError("Missing endpoint")

        with atomic(self.db):
            deleted = (
                self.db.query(PushSubscription)
                .filter(PushSubscription.endpoint_hash == endpoint_hash(endpoint))
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Push subscription removed ({endpoint_hash(endpoint)[:12]})")
        return deleted

    def list(self, user_id: Optional[str] = None) -> List[PushSubscription]:
        query = self.db.query(PushSubscription)
        if user_id is not None:
            query = query.filter(PushSubscription.user_id == str(user_id))
        return query.order_by(PushSubscription.created_at.asc()).all()

    def _find(self, key: str) -> Optional[PushSubscription]:
        return (
            self.db.query(PushSubscription)
            .filter(PushSubscription.endpoint_hash == key)
            .populate_existing()
            .first()
        )
