"""Job queue schemas."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Job status states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
RETRYABLE_STATUSES = (JobStatus.FAILED.value, JobStatus.PENDING.value)


class JobType(str, Enum):
    """Job types."""

    TRANSCRIBE = "transcribe"
    COMPRESS_VIDEO = "compress_video"
    COMPRESS_AUDIO = "compress_audio"
    SYNC_CONNECTOR = "sync_connector"
    GENERATE_RECOMMENDATIONS = "generate_recommendations"
    HEALTH_CHECK = "health_check"
    COLLECT_METRICS = "collect_metrics"
    MIGRATE_STORAGE_TIER = "migrate_storage_tier"


class JobPriority(int, Enum):
    """Claim priority, lowest value first."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3


class DuplicatePolicy(str, Enum):
    """What enqueue does with an active job that already holds the dedupe key."""

    IGNORE = "ignore"
    MERGE = "merge"
    RESCHEDULE = "reschedule"


class JobResponse(BaseModel):
    """Job response model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    status: str
    payload: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    priority: int
    attempts: int
    max_attempts: int
    dedupe_key: Optional[str] = None
    run_after: int
    created_at: int
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    progress_percent: Optional[int] = None
    progress_message: Optional[str] = None
    worker_id: Optional[str] = None
    lease_expires_at: Optional[int] = None


class JobMetrics(BaseModel):
    """Job counts per status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: Dict[str, int]) -> "JobMetrics":
        known = {status.value: counts.get(status.value, 0) for status in JobStatus}
        return cls(**known, total=sum(counts.values()))


class JobListResponse(BaseModel):
    object: str = "list"
    data: List[JobResponse]
    has_more: bool
    metrics: JobMetrics


class EnqueueRequest(BaseModel):
    """Enqueue request from a user action."""

    type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    run_after: Optional[int] = None
    delay_seconds: Optional[int] = Field(default=None, ge=0)
    dedupe_key: Optional[str] = Field(default=None, min_length=1, max_length=255)
    max_attempts: Optional[int] = Field(default=None, ge=1, le=25)
    priority: Optional[JobPriority] = None
    on_duplicate: DuplicatePolicy = DuplicatePolicy.IGNORE


class EnqueueResponse(BaseModel):
    id: int
    created: bool
    merged: bool = False
