"""Application services for permitflow."""

from permitflow.services.approval import ApprovalWorkflow, ActionResult
from permitflow.services.email_queue import EmailQueueProcessor, QueueReport
from permitflow.services.expiry import AutoExpiryScheduler, ExpiryReport
from permitflow.services.notifications import NotificationDispatcher, PushDispatchResult
from permitflow.services.push_registry import PushSubscriptionRegistry, UpsertResult
from permitflow.services.reminders import ExpiryReminderService, ReminderReport

__all__ = [
    "ApprovalWorkflow",
    "ActionResult",
    "EmailQueueProcessor",
    "QueueReport",
    "AutoExpiryScheduler",
    "ExpiryReport",
    "NotificationDispatcher",
    "PushDispatchResult",
    "PushSubscriptionRegistry",
    "UpsertResult",
    "ExpiryReminderService",
    "ReminderReport",
]
