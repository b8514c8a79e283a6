"""Permit state machine.

Pure transition validation: given a current status and a requested action,
decide the target status or raise. Persistence lives in ``service``.
"""

from typing import Optional

from permitflow.core.errors import InvalidStateError, AlreadyClosedError
from .states import (
    PermitStatus,
    PermitTransition,
    TransitionRule,
    get_transition_rule,
    TERMINAL_STATES,
)


class PermitStateMachine:
    """
    Validates transitions for a single permit.
    
    The machine holds the status it was built with and advances it only when
    a transition is legal, so a caller can chain checks before writing.
    """
    
    def __init__(self, permit_id, current_state: PermitStatus):
        self.permit_id = permit_id
        self._state = current_state
    
    @classmethod
    def from_value(cls, permit_id, status: Optional[str]) -> "PermitStateMachine":
        try:
            state = PermitStatus((status or "").lower())
        except ValueError:
            raise InvalidStateError(
                f"Permit {permit_id} has unknown status {status!r}",
                current_status=status,
            )
        return cls(permit_id, state)
    
    @property
    def state(self) -> PermitStatus:
        return self._state
    
    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES
    
    def can_perform(self, transition: PermitTransition) -> bool:
        return get_transition_rule(self._state, transition) is not None
    
    def get_available_transitions(self) -> list[PermitTransition]:
        return [t for t in PermitTransition if self.can_perform(t)]
    
    def transition(self, transition: PermitTransition) -> TransitionRule:
        """
        Advance the machine.
        
        Args:
            transition: The transition to perform
            
        Returns:
            The rule that applied (target state and event type)
            
        Raises:
            AlreadyClosedError: If closing a permit that is already closed
            InvalidStateError: If the transition is not legal from the current state
        """
        if transition is PermitTransition.CLOSE and self._state is PermitStatus.CLOSED:
            raise AlreadyClosedError(
                "Permit is already closed",
                current_status=self._state.value,
                transition=transition.value,
            )
        
        rule = get_transition_rule(self._state, transition)
        if rule is None:
            raise InvalidStateError(
                f"Cannot {transition.value} a permit in status {self._state.value}",
                current_status=self._state.value,
                transition=transition.value,
            )
        
        self._state = rule.to_state
        return rule
