import time
from typing import Any, Dict

from sqlalchemy import JSON, Column, Index, text
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    """A unit of background work."""

    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status_run_after", "status", "run_after"),
        Index("ix_jobs_type_status", "type", "status"),
        Index("ix_jobs_lease_expires_at", "lease_expires_at"),
        Index(
            "ux_jobs_active_dedupe_key",
            "dedupe_key",
            unique=True,
            sqlite_where=text("dedupe_key IS NOT NULL AND status IN ('pending', 'processing')"),
            postgresql_where=text("dedupe_key IS NOT NULL AND status IN ('pending', 'processing')"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    type: str
    status: str = Field(default="pending")
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    result: Dict[str, Any] | None = Field(default=None, sa_column=Column(JSON(none_as_null=True), nullable=True))
    error: str | None = Field(default=None)
    priority: int = Field(default=2)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    dedupe_key: str | None = Field(default=None)
    run_after: int = Field(default_factory=lambda: int(time.time()))
    created_at: int = Field(default_factory=lambda: int(time.time()))
    started_at: int | None = Field(default=None)
    completed_at: int | None = Field(default=None)
    progress_percent: int | None = Field(default=None)
    progress_message: str | None = Field(default=None)
    worker_id: str | None = Field(default=None)
    lease_token: str | None = Field(default=None)
    lease_expires_at: int | None = Field(default=None)
