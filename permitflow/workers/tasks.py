"""Celery tasks for scheduled permit jobs.

Provides periodic processing for:
- Automatic permit expiry (hourly)
- Email queue delivery (every minute)
- Expiry reminders and pending-approval alerts (every 30 minutes)
"""

from typing import Optional, Dict, Any
import logging

from celery import Celery, shared_task
from celery.schedules import crontab

from permitflow.db.session import SessionLocal
from permitflow.core.config import get_settings
from permitflow.workers import jobs

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    'permitflow',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'permitflow.workers.tasks.process_email_queue': {'queue': 'mail'},
    },
    task_default_queue='default',
    beat_schedule={
        'expire-permits': {
            'task': 'permitflow.workers.tasks.expire_permits',
            'schedule': crontab(minute=0),
        },
        'process-email-queue': {
            'task': 'permitflow.workers.tasks.process_email_queue',
            'schedule': crontab(),
        },
        'send-reminders': {
            'task': 'permitflow.workers.tasks.send_reminders',
            'schedule': crontab(minute='*/30'),
        },
    },
)


@shared_task(name='permitflow.workers.tasks.expire_permits')
def expire_permits() -> Dict[str, Any]:
    """Expire issued/active permits past their validity window."""
    db = SessionLocal()
    try:
        result = jobs.expire_permits(db)
        logger.info(f"Expiry sweep: {result['updated']}/{result['found']} expired")
        return result
    except Exception:
        logger.exception("Expiry sweep failed")
        raise
    finally:
        db.close()


@shared_task(name='permitflow.workers.tasks.process_email_queue')
def process_email_queue(limit: Optional[int] = None) -> Dict[str, Any]:
    """
    Deliver one batch of pending emails.
    
    Args:
        limit: Maximum rows to claim (settings.email_queue_limit by default)
    """
    db = SessionLocal()
    try:
        return jobs.process_email_queue(db, limit=limit)
    except Exception:
        logger.exception("Email queue processing failed")
        raise
    finally:
        db.close()


@shared_task(name='permitflow.workers.tasks.send_reminders')
def send_reminders() -> Dict[str, Any]:
    db = SessionLocal()
    try:
        return jobs.send_reminders(db)
    except Exception:
        logger.exception("Reminder run failed")
        raise
    finally:
        db.close()


@shared_task(name='permitflow.workers.tasks.push_test')
def push_test(message: Optional[str] = None) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        return jobs.push_test(db, message)
    finally:
        db.close()
