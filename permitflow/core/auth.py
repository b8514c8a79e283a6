"""Caller identity and role policy.

Every operation receives an explicit ``AuthContext``; the role policy for
each operation is a pure predicate over it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, FrozenSet


class Role(str, Enum):
    """Roles known to the permit system."""
    
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"


# Roles allowed to approve, reject and close any permit
DECISION_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.MANAGER})


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller: who they are and which role they hold."""
    
    user_id: str
    role: Role
    
    @classmethod
    def from_claims(cls, user_id: str, role: Optional[str]) -> "AuthContext":
        try:
            parsed = Role((role or "").lower())
        except ValueError:
            parsed = Role.USER
        return cls(user_id=str(user_id), role=parsed)
    
    @property
    def is_decision_maker(self) -> bool:
        return self.role in DECISION_ROLES


def can_decide(auth: Optional[AuthContext]) -> bool:
    """Approve and reject are reserved for admins and managers."""
    return auth is not None and auth.is_decision_maker


def can_close(auth: Optional[AuthContext], holder_id: Optional[str]) -> bool:
    """Admins and managers close any permit; holders close their own."""
    if auth is None:
        return False
    if auth.is_decision_maker:
        return True
    return holder_id is not None and str(holder_id) == auth.user_id
