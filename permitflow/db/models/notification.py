"""Email queue and push subscription models."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Text, Uuid

from permitflow.db.base import Base


class EmailStatus(str, Enum):
    """Queue entry status. ``sent`` and ``failed`` are terminal."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EmailQueueEntry(Base):
    """
    One outbound email waiting for, or done with, delivery.
    
    Rows are claimed by a processor through ``claim_token`` before any send
    is attempted.
    """
    __tablename__ = "email_queue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    to_address = Column(String(255), nullable=False, index=True)
    subject = Column(String(512), nullable=False)
    body = Column(Text, nullable=False)
    
    status = Column(String(20), nullable=False, default=EmailStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    
    # Reminder-class emails only: recipient + permit ref + reminder class
    dedup_key = Column(String(512), nullable=True, index=True)
    
    # Claim bookkeeping
    claim_token = Column(String(36), nullable=True, index=True)
    claimed_at = Column(DateTime, nullable=True)
    
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)
    
    def __repr__(self) -> str:
        return f"<EmailQueueEntry to={self.to_address} [{self.status}]>"


class PushSubscription(Base):
    """
    A browser push endpoint.
    
    ``endpoint_hash`` is the natural key; there is at most one row per
    endpoint.
    """
    __tablename__ = "push_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=True, index=True)
    endpoint = Column(Text, nullable=False)
    endpoint_hash = Column(String(64), nullable=False, unique=True)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    
    def __repr__(self) -> str:
        return f"<PushSubscription {self.endpoint_hash[:12]} user={self.user_id}>"
