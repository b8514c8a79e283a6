"""Error taxonomy for permitflow.

Every error carries the HTTP status code the API layer answers with, so the
same exceptions flow unchanged from the lifecycle up to the routers and the
batch entry points.
"""

from typing import Optional


class PermitFlowError(Exception):
    """Base class for all permitflow errors."""
    
    status_code = 500
    
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(PermitFlowError):
    """No session or an invalid one."""
    
    status_code = 401


class AuthorizationError(PermitFlowError):
    """Caller is authenticated but lacks the role for the operation."""
    
    status_code = 403


ForbiddenError = AuthorizationError


class NotFoundError(PermitFlowError):
    """Permit or subscription does not exist."""
    
    status_code = 404


class InvalidStateError(PermitFlowError):
    """Transition is not legal from the permit's current status."""
    
    status_code = 400
    
    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        transition: Optional[str] = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.transition = transition


class AlreadyClosedError(InvalidStateError):
    """Close requested on a permit that is already closed."""


class ValidationError(PermitFlowError):
    """Malformed or missing request fields."""
    
    status_code = 422


class ServerError(PermitFlowError):
    """Unexpected failure, usually from the store."""
    
    status_code = 500
