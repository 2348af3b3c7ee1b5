"""Claiming runnable jobs and sweeping leases left behind by dead workers."""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hopper_server.database import current_timestamp, get_session
from hopper_server.errors import InvalidTransitionError, JobNotFoundError
from hopper_server.models.jobs import Job
from hopper_server.queues import backoff, store
from hopper_server.settings import Settings

logger = logging.getLogger(__name__)


async def claim_jobs(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    worker_id: str,
    limit: int,
    lease_seconds: int,
    now: Optional[int] = None,
) -> List[Job]:
    """Reserve up to `limit` due jobs for this worker.

    Candidates are read first, then each is claimed in its own short
    transaction. A candidate another worker took in between matches no row
    and is skipped.
    """
    now = current_timestamp() if now is None else now
    async with get_session(session_maker, read_only=True) as session:
        candidate_ids = await store.select_due_job_ids(session, now, limit)

    claimed: List[Job] = []
    for job_id in candidate_ids:
        async with get_session(session_maker) as session:
            job = await store.claim_job(session, job_id, worker_id=worker_id, lease_seconds=lease_seconds, now=now)
        if job is None:
            logger.debug(f"Job {job_id} was claimed by another worker")
            continue
        claimed.append(job)

    if claimed:
        logger.info(f"Worker {worker_id} claimed {len(claimed)} job(s): {[job.id for job in claimed]}")
    return claimed


async def claim_job_by_id(
    session_maker: async_sessionmaker[AsyncSession],
    job_id: int,
    *,
    worker_id: str,
    lease_seconds: int,
    now: Optional[int] = None,
) -> Job:
    """Reserve one pending job for this worker even if it is not due yet."""
    now = current_timestamp() if now is None else now
    async with get_session(session_maker) as session:
        job = await store.claim_job(
            session, job_id, worker_id=worker_id, lease_seconds=lease_seconds, now=now, due_only=False
        )
        if job is None:
            current = await store.get_job(session, job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            raise InvalidTransitionError(job_id, current.status, "run")
    logger.info(f"Worker {worker_id} claimed job {job_id} directly")
    return job


async def reap_expired_leases(
    session_maker: async_sessionmaker[AsyncSession],
    settings: Settings,
    *,
    now: Optional[int] = None,
    limit: int = 100,
) -> int:
    """Count expired leases as failed attempts and release them.

    Returns the number of jobs moved out of processing.
    """
    now = current_timestamp() if now is None else now
    async with get_session(session_maker, read_only=True) as session:
        expired = await store.find_expired_leases(session, now, limit)

    released = 0
    for job in expired:
        assert job.id is not None
        if job.lease_token is None:
            continue
        attempts = job.attempts + 1
        next_run = None
        if attempts < job.max_attempts:
            next_run = backoff.retry_at(
                now,
                attempts,
                base=settings.backoff_base_seconds,
                cap=settings.backoff_max_seconds,
                jitter_ratio=settings.backoff_jitter_ratio,
                seed=job.id,
            )
        error = f"Lease expired at {job.lease_expires_at} while held by worker {job.worker_id}"
        async with get_session(session_maker) as session:
            updated = await store.fail_job(
                session,
                job.id,
                job.lease_token,
                attempts=attempts,
                error=error,
                retry_at=next_run,
                now=now,
                expired_before=now,
            )
        if updated:
            released += 1
            state = "re-queued" if next_run is not None else "failed"
            logger.warning(f"Job {job.id} lease expired (worker {job.worker_id}), {state}")

    return released
