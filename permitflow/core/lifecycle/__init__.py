"""Permit lifecycle module.

Implements the permit status state machine and the persistence of its
transitions.
"""

from .states import PermitStatus, PermitTransition, VALID_TRANSITIONS
from .machine import PermitStateMachine
from .service import PermitLifecycle

__all__ = [
    "PermitStatus",
    "PermitTransition",
    "VALID_TRANSITIONS",
    "PermitStateMachine",
    "PermitLifecycle",
]
