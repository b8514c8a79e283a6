"""Celery workers for permitflow."""

from permitflow.workers.tasks import (
    celery_app,
    expire_permits,
    process_email_queue,
    send_reminders,
    push_test,
)

__all__ = [
    "celery_app",
    "expire_permits",
    "process_email_queue",
    "send_reminders",
    "push_test",
]
