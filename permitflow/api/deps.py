from typing import Generator, Optional, Dict, Any

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from permitflow.core.auth import AuthContext
from permitflow.core.capabilities import (
    ActivityLogger,
    LoggingActivityLogger,
    PushTransport,
    build_push_transport,
)
from permitflow.core.clock import Clock, SystemClock
from permitflow.core.config import Settings, get_settings
from permitflow.core.errors import ValidationError
from permitflow.core.lifecycle import PermitLifecycle
from permitflow.core.security import decode_access_token
from permitflow.db.session import SessionLocal
from permitflow.services.approval import ApprovalWorkflow
from permitflow.services.notifications import NotificationDispatcher
from permitflow.services.push_registry import PushSubscriptionRegistry

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ----------------------------------------------------------------------
# Identity
# ----------------------------------------------------------------------

def get_optional_auth(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[AuthContext]:
    """AuthContext from the bearer token, or None when no token is sent."""
    if not token:
        return None
    return decode_access_token(token)


# ----------------------------------------------------------------------
# Capabilities and services
# ----------------------------------------------------------------------

def get_clock() -> Clock:
    return SystemClock()


def get_activity_logger() -> ActivityLogger:
    return LoggingActivityLogger()


def get_push_transport(settings: Settings = Depends(get_settings)) -> PushTransport:
    return build_push_transport(settings)


def get_lifecycle(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    activity: ActivityLogger = Depends(get_activity_logger),
) -> PermitLifecycle:
    return PermitLifecycle(db, clock=clock, activity=activity)


def get_dispatcher(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    push_transport: PushTransport = Depends(get_push_transport),
    settings: Settings = Depends(get_settings),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, push_transport=push_transport, clock=clock, settings=settings)


def get_workflow(
    db: Session = Depends(get_db),
    lifecycle: PermitLifecycle = Depends(get_lifecycle),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ApprovalWorkflow:
    return ApprovalWorkflow(db, lifecycle, dispatcher)


def get_registry(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> PushSubscriptionRegistry:
    return PushSubscriptionRegistry(db, clock=clock)


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------

async def read_payload(request: Request) -> Dict[str, Any]:
    """
    Parse a JSON or form-encoded request body into a dict.
    
    Used as a dependency so the route handlers themselves can stay
    synchronous and run in the threadpool.
    
    Raises:
        ValidationError: If the body is malformed
    """
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {key: value for key, value in form.items()}
    
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    return data
