"""Payload models per job type, validated at the enqueue boundary."""

from typing import Any, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hopper_server.errors import InvalidJobError
from hopper_server.schemas.jobs import JobPriority, JobType


class JobPayload(BaseModel):
    """Unknown keys are kept so handlers receive the payload verbatim."""

    model_config = ConfigDict(extra="allow")


class TranscribePayload(JobPayload):
    content_id: str = Field(min_length=1)
    language: Optional[str] = None


class CompressVideoPayload(JobPayload):
    content_id: str = Field(min_length=1)
    storage_path: str = Field(min_length=1)
    profile: str = "balanced"


class CompressAudioPayload(JobPayload):
    content_id: str = Field(min_length=1)
    storage_path: str = Field(min_length=1)
    bitrate_kbps: int = Field(default=64, gt=0)


class SyncConnectorPayload(JobPayload):
    connector_id: str = Field(min_length=1)
    sync_type: Literal["incremental", "reconciliation", "full"] = "incremental"
    trigger: Literal["webhook", "schedule", "manual"] = "manual"
    last_event_id: Optional[str] = None


class GenerateRecommendationsPayload(JobPayload):
    org_id: Optional[str] = None


class HealthCheckPayload(JobPayload):
    stuck_after_seconds: int = Field(default=3600, gt=0)


class CollectMetricsPayload(JobPayload):
    org_id: Optional[str] = None
    window_minutes: int = Field(default=15, gt=0)


class MigrateStorageTierPayload(JobPayload):
    content_id: str = Field(min_length=1)
    target_tier: Literal["hot", "warm", "cold", "glacier"]


PAYLOAD_MODELS: Dict[JobType, Type[JobPayload]] = {
    JobType.TRANSCRIBE: TranscribePayload,
    JobType.COMPRESS_VIDEO: CompressVideoPayload,
    JobType.COMPRESS_AUDIO: CompressAudioPayload,
    JobType.SYNC_CONNECTOR: SyncConnectorPayload,
    JobType.GENERATE_RECOMMENDATIONS: GenerateRecommendationsPayload,
    JobType.HEALTH_CHECK: HealthCheckPayload,
    JobType.COLLECT_METRICS: CollectMetricsPayload,
    JobType.MIGRATE_STORAGE_TIER: MigrateStorageTierPayload,
}

DEFAULT_PRIORITIES: Dict[JobType, JobPriority] = {
    JobType.TRANSCRIBE: JobPriority.HIGH,
    JobType.COMPRESS_VIDEO: JobPriority.HIGH,
    JobType.COMPRESS_AUDIO: JobPriority.HIGH,
    JobType.SYNC_CONNECTOR: JobPriority.NORMAL,
    JobType.MIGRATE_STORAGE_TIER: JobPriority.NORMAL,
    JobType.GENERATE_RECOMMENDATIONS: JobPriority.LOW,
    JobType.HEALTH_CHECK: JobPriority.LOW,
    JobType.COLLECT_METRICS: JobPriority.LOW,
}


def parse_job_type(job_type: str | JobType) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        raise InvalidJobError(f"Unknown job type: {job_type}") from None


def parse_payload(job_type: str | JobType, payload: Dict[str, Any] | None) -> JobPayload:
    """Validate a raw payload into the model registered for its job type."""
    model = PAYLOAD_MODELS[parse_job_type(job_type)]
    if payload is not None and not isinstance(payload, dict):
        raise InvalidJobError(f"Payload for {job_type} must be an object")
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        raise InvalidJobError(f"Invalid payload for {job_type}: {e.errors(include_url=False)}") from e


def validate_payload(job_type: str | JobType, payload: Dict[str, Any] | None) -> Dict[str, Any]:
    return parse_payload(job_type, payload).model_dump(mode="json")
