"""Permit lifecycle states and transitions.

State Machine Diagram:

    ┌──────────┐
    │  DRAFT   │ ← Initial state (form submission, upstream)
    └────┬─────┘
         │ (upstream)
    ┌────▼─────┐
    │ PENDING  │ awaiting a decision
    └────┬─────┘
         │
         ├──────────────────────┐
         │ approve              │ reject
    ┌────▼─────┐          ┌─────▼──────┐
    │  ACTIVE  │          │  REJECTED  │
    └────┬─────┘          └────────────┘
         │
         ├──────────────────────┐
         │ close                │ expire (valid_to < now)
    ┌────▼─────┐          ┌─────▼──────┐
    │  CLOSED  │          │  EXPIRED   │ ← also reached from ISSUED
    └──────────┘          └────────────┘
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class PermitStatus(str, Enum):
    """Lifecycle stage of a permit."""
    
    DRAFT = "draft"
    PENDING = "pending"
    ISSUED = "issued"
    ACTIVE = "active"
    
    # Terminal for practical purposes
    REJECTED = "rejected"
    EXPIRED = "expired"
    CLOSED = "closed"


class PermitTransition(str, Enum):
    """Actions that move a permit between states."""
    
    APPROVE = "approve"   # PENDING → ACTIVE
    REJECT = "reject"     # PENDING → REJECTED
    EXPIRE = "expire"     # ISSUED/ACTIVE → EXPIRED
    CLOSE = "close"       # ACTIVE → CLOSED


class TransitionRule(NamedTuple):
    """Defines a valid state transition and the event it records."""
    from_state: PermitStatus
    to_state: PermitStatus
    transition: PermitTransition
    event_type: str


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(PermitStatus.PENDING, PermitStatus.ACTIVE, PermitTransition.APPROVE, "permit_approved"),
    TransitionRule(PermitStatus.PENDING, PermitStatus.REJECTED, PermitTransition.REJECT, "permit_rejected"),
    TransitionRule(PermitStatus.ISSUED, PermitStatus.EXPIRED, PermitTransition.EXPIRE, "status_changed"),
    TransitionRule(PermitStatus.ACTIVE, PermitStatus.EXPIRED, PermitTransition.EXPIRE, "status_changed"),
    TransitionRule(PermitStatus.ACTIVE, PermitStatus.CLOSED, PermitTransition.CLOSE, "permit_closed"),
]

# Lookup tables
VALID_TRANSITIONS: Dict[PermitStatus, Set[PermitTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[PermitStatus, PermitTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_state, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


# No further automatic transitions; still readable indefinitely
TERMINAL_STATES: Set[PermitStatus] = {
    PermitStatus.REJECTED,
    PermitStatus.EXPIRED,
    PermitStatus.CLOSED,
}

# States the expiry sweep looks at
EXPIRABLE_STATES: Set[PermitStatus] = {
    PermitStatus.ISSUED,
    PermitStatus.ACTIVE,
}


def can_transition(from_state: PermitStatus, transition: PermitTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(from_state: PermitStatus, transition: PermitTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))


def get_target_state(from_state: PermitStatus, transition: PermitTransition) -> Optional[PermitStatus]:
    """Get the target state for a transition."""
    rule = get_transition_rule(from_state, transition)
    return rule.to_state if rule else None
