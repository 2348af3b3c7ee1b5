import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.database import current_timestamp
from hopper_server.dependencies import get_db_session, get_readonly_db_session, get_settings
from hopper_server.errors import DedupeConflictError, InvalidTransitionError, JobNotFoundError
from hopper_server.queues import store
from hopper_server.queues.enqueue import enqueue
from hopper_server.schemas.jobs import (
    EnqueueRequest,
    EnqueueResponse,
    JobListResponse,
    JobMetrics,
    JobResponse,
    JobStatus,
    JobType,
)
from hopper_server.settings import Settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1", tags=["jobs"])


@router.get("/jobs")
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by job status"),
    type: Optional[JobType] = Query(None, description="Filter by job type"),
    limit: int = Query(50, ge=1, le=500, description="Max number of jobs to return"),
    session: AsyncSession = Depends(get_readonly_db_session),
) -> JobListResponse:
    """List jobs, newest first, with counts per status."""
    jobs = await store.list_jobs(
        session,
        status=status.value if status else None,
        type=type.value if type else None,
        limit=limit + 1,
    )
    counts = await store.count_by_status(session)
    return JobListResponse(
        data=[JobResponse.model_validate(job) for job in jobs[:limit]],
        has_more=len(jobs) > limit,
        metrics=JobMetrics.from_counts(counts),
    )


@router.post("/jobs")
async def create_job(
    request: EnqueueRequest,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> EnqueueResponse:
    """Queue a job on behalf of a user action."""
    result = await enqueue(
        session,
        request.type,
        request.payload,
        run_after=request.run_after,
        delay=request.delay_seconds,
        dedupe_key=request.dedupe_key,
        max_attempts=request.max_attempts,
        priority=request.priority.value if request.priority is not None else None,
        on_duplicate=request.on_duplicate,
        settings=settings,
    )
    return EnqueueResponse(id=result.job_id, created=result.created, merged=result.merged)


@router.get("/jobs/{job_id}")
async def get_job(job_id: int, session: AsyncSession = Depends(get_readonly_db_session)) -> JobResponse:
    """Get a specific job by ID."""
    job = await store.get_job(session, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/retry")
async def retry_job(job_id: int, session: AsyncSession = Depends(get_db_session)) -> JobResponse:
    """Re-queue a failed or pending job so it runs now."""
    try:
        job = await store.reset_job(session, job_id, now=current_timestamp())
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=f"{e}; only failed or pending jobs can be retried")
    except DedupeConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Job {job_id} queued for retry by operator")
    return JobResponse.model_validate(job)
