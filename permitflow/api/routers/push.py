"""Push subscription endpoints."""

import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends
from pydantic import ValidationError as PydanticValidationError

from permitflow.api.deps import get_optional_auth, get_registry, read_payload
from permitflow.api.schemas.common import (
    PushSubscribeRequest,
    PushSubscribeResponse,
    PushUnsubscribeResponse,
)
from permitflow.core.auth import AuthContext
from permitflow.core.errors import ValidationError
from permitflow.services.push_registry import PushSubscriptionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push", tags=["push"])


def _endpoint_from(data: Dict[str, Any]) -> str:
    endpoint = str(data.get("endpoint") or "").strip()
    # Some clients post the whole PushSubscription object
    subscription = data.get("subscription")
    if not endpoint and isinstance(subscription, dict):
        endpoint = str(subscription.get("endpoint") or "").strip()
    return endpoint


@router.post("/subscribe", response_model=PushSubscribeResponse)
def subscribe(
    data: Dict[str, Any] = Depends(read_payload),
    auth: Optional[AuthContext] = Depends(get_optional_auth),
    registry: PushSubscriptionRegistry = Depends(get_registry),
):
    """Store or refresh a browser push subscription."""
    try:
        body = PushSubscribeRequest.model_validate(data)
    except PydanticValidationError:
        raise ValidationError("Missing endpoint or keys")
    
    result = registry.upsert(
        body.endpoint,
        body.keys.p256dh,
        body.keys.auth,
        user_id=auth.user_id if auth else None,
    )
    return PushSubscribeResponse(ok=True, id=result.id, action=result.action)


@router.post("/unsubscribe", response_model=PushUnsubscribeResponse)
def unsubscribe(
    data: Dict[str, Any] = Depends(read_payload),
    registry: PushSubscriptionRegistry = Depends(get_registry),
):
    """Remove a push subscription. Unknown endpoints are not an error."""
    deleted = registry.delete(_endpoint_from(data))
    return PushUnsubscribeResponse(ok=True, deleted=deleted)
