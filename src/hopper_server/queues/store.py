"""Job store: the only code that reads or writes the jobs table.

Every mutation is one conditional UPDATE. Callers own the transaction, and a
transition that matches no row reports failure instead of raising, so racing
workers can tell they lost.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from hopper_server.errors import DedupeConflictError, InvalidTransitionError, JobNotFoundError
from hopper_server.models.jobs import Job
from hopper_server.schemas.jobs import ACTIVE_STATUSES, RETRYABLE_STATUSES, JobStatus

logger = logging.getLogger(__name__)


async def insert_job(session: AsyncSession, job: Job) -> int:
    session.add(job)
    await session.flush()
    assert job.id is not None
    return job.id


async def get_job(session: AsyncSession, job_id: int) -> Optional[Job]:
    stmt = select(Job).where(col(Job.id) == job_id).execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_jobs(
    session: AsyncSession,
    status: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = 50,
) -> List[Job]:
    query = select(Job)
    if status:
        query = query.where(col(Job.status) == status)
    if type:
        query = query.where(col(Job.type) == type)
    query = query.order_by(col(Job.created_at).desc(), col(Job.id).desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_by_status(session: AsyncSession) -> Dict[str, int]:
    stmt = select(Job.status, func.count()).group_by(col(Job.status))
    result = await session.execute(stmt)
    return {status: count for status, count in result.all()}


async def find_active_by_dedupe_key(session: AsyncSession, dedupe_key: str) -> Optional[Job]:
    stmt = (
        select(Job)
        .where(col(Job.dedupe_key) == dedupe_key, col(Job.status).in_(ACTIVE_STATUSES))
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def update_pending_job(session: AsyncSession, job_id: int, values: Dict[str, Any]) -> bool:
    """Apply values to a job only while it is still pending."""
    stmt = (
        update(Job)
        .where(col(Job.id) == job_id, col(Job.status) == JobStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def select_due_job_ids(session: AsyncSession, now: int, limit: int) -> List[int]:
    """Runnable job ids, highest priority and oldest due first."""
    stmt = (
        select(Job.id)
        .where(col(Job.status) == JobStatus.PENDING.value, col(Job.run_after) <= now)
        .order_by(col(Job.priority), col(Job.run_after), col(Job.created_at), col(Job.id))
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [job_id for job_id in result.scalars().all() if job_id is not None]


async def claim_job(
    session: AsyncSession,
    job_id: int,
    *,
    worker_id: str,
    lease_seconds: int,
    now: int,
    due_only: bool = True,
) -> Optional[Job]:
    """pending -> processing, only if the row is still pending and, when due_only, due."""
    conditions = [col(Job.id) == job_id, col(Job.status) == JobStatus.PENDING.value]
    if due_only:
        conditions.append(col(Job.run_after) <= now)
    stmt = (
        update(Job)
        .where(*conditions)
        .values(
            status=JobStatus.PROCESSING.value,
            started_at=now,
            completed_at=None,
            worker_id=worker_id,
            lease_token=uuid.uuid4().hex,
            lease_expires_at=now + lease_seconds,
            progress_percent=0,
            progress_message="Starting job",
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        return None
    return await get_job(session, job_id)


def _leased(job_id: int, lease_token: str) -> tuple:
    return (
        col(Job.id) == job_id,
        col(Job.status) == JobStatus.PROCESSING.value,
        col(Job.lease_token) == lease_token,
    )


async def renew_lease(session: AsyncSession, job_id: int, lease_token: str, *, lease_seconds: int, now: int) -> bool:
    stmt = (
        update(Job)
        .where(*_leased(job_id, lease_token))
        .values(lease_expires_at=now + lease_seconds)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def update_progress(
    session: AsyncSession,
    job_id: int,
    lease_token: str,
    *,
    percent: int,
    message: str,
) -> bool:
    stmt = (
        update(Job)
        .where(*_leased(job_id, lease_token))
        .values(progress_percent=max(0, min(100, percent)), progress_message=message)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def complete_job(
    session: AsyncSession,
    job_id: int,
    lease_token: str,
    *,
    result: Optional[Dict[str, Any]],
    now: int,
) -> bool:
    stmt = (
        update(Job)
        .where(*_leased(job_id, lease_token))
        .values(
            status=JobStatus.COMPLETED.value,
            completed_at=now,
            error=None,
            result=result,
            progress_percent=100,
            progress_message="Completed",
            lease_token=None,
            lease_expires_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    outcome = await session.execute(stmt)
    return outcome.rowcount == 1


async def fail_job(
    session: AsyncSession,
    job_id: int,
    lease_token: str,
    *,
    attempts: int,
    error: str,
    retry_at: Optional[int],
    now: int,
    expired_before: Optional[int] = None,
) -> bool:
    """Record a failed attempt: back to pending at retry_at, or terminal when retry_at is None.

    With expired_before set, only a lease that is still expired is released.
    """
    values: Dict[str, Any] = {
        "attempts": attempts,
        "error": error,
        "lease_token": None,
        "lease_expires_at": None,
        "progress_percent": None,
    }
    if retry_at is not None:
        values.update(
            status=JobStatus.PENDING.value,
            run_after=retry_at,
            progress_message=f"Retry scheduled ({attempts} attempts used)",
        )
    else:
        values.update(
            status=JobStatus.FAILED.value,
            completed_at=now,
            progress_message="Failed",
        )
    conditions = list(_leased(job_id, lease_token))
    if expired_before is not None:
        conditions.append(col(Job.lease_expires_at) < expired_before)
    stmt = update(Job).where(*conditions).values(**values).execution_options(synchronize_session=False)
    result = await session.execute(stmt)
    return result.rowcount == 1


async def find_expired_leases(session: AsyncSession, now: int, limit: int = 100) -> List[Job]:
    stmt = (
        select(Job)
        .where(
            col(Job.status) == JobStatus.PROCESSING.value,
            col(Job.lease_expires_at).is_not(None),
            col(Job.lease_expires_at) < now,
        )
        .order_by(col(Job.lease_expires_at))
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def reset_job(session: AsyncSession, job_id: int, *, now: int) -> Job:
    """Operator retry: failed or pending back to a fresh pending job due now."""
    job = await get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    if job.status not in RETRYABLE_STATUSES:
        raise InvalidTransitionError(job_id, job.status, "retry")

    if job.dedupe_key and job.status == JobStatus.FAILED.value:
        holder = await find_active_by_dedupe_key(session, job.dedupe_key)
        if holder is not None and holder.id != job.id:
            raise DedupeConflictError(job.dedupe_key, holder.id)

    stmt = (
        update(Job)
        .where(col(Job.id) == job_id, col(Job.status) == job.status)
        .values(
            status=JobStatus.PENDING.value,
            attempts=0,
            error=None,
            started_at=None,
            completed_at=None,
            run_after=now,
            progress_percent=None,
            progress_message=None,
            worker_id=None,
            lease_token=None,
            lease_expires_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        current = await get_job(session, job_id)
        raise InvalidTransitionError(job_id, current.status if current else "missing", "retry")

    refreshed = await get_job(session, job_id)
    assert refreshed is not None
    logger.info(f"Job {job_id} reset to pending by operator (was {job.status})")
    return refreshed
