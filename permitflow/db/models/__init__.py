"""Database models for permitflow."""

from permitflow.db.models.permit import Permit, PermitEvent
from permitflow.db.models.notification import (
    EmailQueueEntry,
    EmailStatus,
    PushSubscription,
)

__all__ = [
    "Permit",
    "PermitEvent",
    "EmailQueueEntry",
    "EmailStatus",
    "PushSubscription",
]
