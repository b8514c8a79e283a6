"""Common schemas for the permitflow API."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ActionResponse(BaseModel):
    """Standard permit route response."""
    success: bool
    message: str
    notification_error: Optional[str] = None


class StartWorkResponse(BaseModel):
    success: bool
    work_started_at: datetime


class PushKeys(BaseModel):
    p256dh: str = ""
    auth: str = ""


class PushSubscribeRequest(BaseModel):
    """Body of a subscribe call, as produced by ``PushSubscription.toJSON()``."""
    endpoint: str = ""
    keys: PushKeys = Field(default_factory=PushKeys)


class PushSubscribeResponse(BaseModel):
    ok: bool
    id: str
    action: str


class PushUnsubscribeResponse(BaseModel):
    ok: bool
    deleted: int
