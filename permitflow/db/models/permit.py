"""Permit and permit event models.

Permits are created in ``draft`` by the form builder and afterwards only
change through the lifecycle service. Events are the append-only audit trail
of every lifecycle action.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from permitflow.db.base import Base


class Permit(Base):
    """A unit of authorized work with a validity window and an approval gate."""
    __tablename__ = "permits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ref_number = Column(String(64), nullable=False, index=True)
    template_id = Column(String(64), nullable=True)
    
    # Holder
    holder_id = Column(String(64), nullable=True, index=True)
    holder_email = Column(String(255), nullable=True)
    
    # Workflow state
    status = Column(String(20), nullable=False, default="draft", index=True)
    valid_from = Column(DateTime, nullable=True)
    valid_to = Column(DateTime, nullable=True, index=True)
    
    # Approval tracking
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    
    # Rejection tracking
    rejected_by = Column(String(64), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    
    # Closure tracking
    closed_by = Column(String(64), nullable=True)
    closed_at = Column(DateTime, nullable=True)
    closure_reason = Column(Text, nullable=True)
    
    work_started_at = Column(DateTime, nullable=True)
    
    # Public access token
    unique_link = Column(String(64), nullable=True, unique=True)
    
    # Set once approvers have been told the permit awaits a decision
    notified_at = Column(DateTime, nullable=True)
    
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    
    events = relationship("PermitEvent", back_populates="permit", order_by="PermitEvent.created_at")
    
    def __repr__(self) -> str:
        return f"<Permit {self.ref_number} [{self.status}]>"


class PermitEvent(Base):
    """Immutable audit record of a status change or lifecycle action."""
    __tablename__ = "permit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    permit_id = Column(Uuid, ForeignKey("permits.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False, index=True)
    actor = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    
    permit = relationship("Permit", back_populates="events")
    
    def __repr__(self) -> str:
        return f"<PermitEvent {self.type} permit={self.permit_id}>"
