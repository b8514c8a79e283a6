"""Permit action endpoints: approve, reject, close, start work."""

import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends

from permitflow.api.deps import get_optional_auth, get_workflow, read_payload
from permitflow.api.schemas.common import ActionResponse, StartWorkResponse
from permitflow.core.auth import AuthContext
from permitflow.core.errors import ValidationError
from permitflow.services.approval import ApprovalWorkflow, ActionResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["permits"])


def _field(data: Dict[str, Any], name: str) -> Optional[str]:
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _require_permit_id(data: Dict[str, Any]) -> str:
    permit_id = _field(data, "permit_id")
    if not permit_id:
        raise ValidationError("Missing permit_id")
    return permit_id


def _respond(result: ActionResult) -> ActionResponse:
    return ActionResponse(
        success=True,
        message=result.message,
        notification_error=result.notification_error,
    )


@router.post("/approve-permit", response_model=ActionResponse, response_model_exclude_none=True)
def approve_permit(
    data: Dict[str, Any] = Depends(read_payload),
    auth: Optional[AuthContext] = Depends(get_optional_auth),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Approve a pending permit. Admin or manager only."""
    result = workflow.approve(auth, _require_permit_id(data))
    return _respond(result)


@router.post("/reject-permit", response_model=ActionResponse, response_model_exclude_none=True)
def reject_permit(
    data: Dict[str, Any] = Depends(read_payload),
    auth: Optional[AuthContext] = Depends(get_optional_auth),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Reject a pending permit with an optional reason. Admin or manager only."""
    result = workflow.reject(auth, _require_permit_id(data), reason=_field(data, "reason"))
    return _respond(result)


@router.post("/close-permit", response_model=ActionResponse, response_model_exclude_none=True)
def close_permit(
    data: Dict[str, Any] = Depends(read_payload),
    auth: Optional[AuthContext] = Depends(get_optional_auth),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """
    Close an active permit.
    
    Accepts JSON or form-encoded bodies. The holder may close their own
    permit; admins and managers may close any.
    """
    result = workflow.close(auth, _require_permit_id(data), reason=_field(data, "reason"))
    return _respond(result)


@router.post("/start-work", response_model=StartWorkResponse)
def start_work(
    data: Dict[str, Any] = Depends(read_payload),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Record the work start time. Safe to call repeatedly."""
    link = _field(data, "link")
    permit_id = _field(data, "permit_id")
    if not link and not permit_id:
        raise ValidationError("Missing link or permit_id")
    started_at = workflow.start_work(link=link, permit_id=permit_id)
    return StartWorkResponse(success=True, work_started_at=started_at)
