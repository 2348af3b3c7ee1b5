"""Connector registration schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ConnectorType = Literal["google_drive", "zoom"]


class ConnectorRequest(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    connector_type: ConnectorType
    channel_id: Optional[str] = Field(default=None, min_length=1)
    webhook_secret: Optional[str] = None
    is_active: bool = True


class ConnectorResponse(BaseModel):
    """Secrets are never echoed back."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    connector_type: str
    channel_id: Optional[str] = None
    is_active: bool
    has_webhook_secret: bool = False
    created_at: int
