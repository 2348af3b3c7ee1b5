import time
from typing import Any, Dict

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


class WebhookEvent(SQLModel, table=True):
    """Raw inbound provider notification, kept for idempotency and audit."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
        Index("ix_webhook_events_connector_id", "connector_id"),
        Index("ix_webhook_events_processed", "processed"),
        Index("ix_webhook_events_received_at", "received_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    source: str
    event_id: str
    event_type: str
    connector_id: str | None = Field(default=None)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    processed: bool = Field(default=False)
    processed_at: int | None = Field(default=None)
    processing_error: str | None = Field(default=None)
    retry_count: int = Field(default=0)
    job_id: int | None = Field(default=None)
    received_at: int = Field(default_factory=lambda: int(time.time()))
