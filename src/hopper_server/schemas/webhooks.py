"""Webhook-related schemas."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ChangeKind(str, Enum):
    """What a provider notification says happened."""

    CHANGED = "changed"
    REMOVED = "removed"
    HANDSHAKE = "handshake"
    OTHER = "other"


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider."""

    status: str
    message: str
    job_id: Optional[int] = None


class ZoomWebhookBody(BaseModel):
    event: str = Field(min_length=1)
    event_ts: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
