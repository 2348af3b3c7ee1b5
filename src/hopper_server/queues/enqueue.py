import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.database import current_timestamp
from hopper_server.errors import InvalidJobError
from hopper_server.models.jobs import Job
from hopper_server.queues import store
from hopper_server.schemas.jobs import DuplicatePolicy, JobPriority, JobStatus, JobType
from hopper_server.schemas.payloads import DEFAULT_PRIORITIES, parse_job_type, validate_payload
from hopper_server.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnqueueResult:
    job_id: int
    created: bool
    merged: bool = False


async def enqueue(
    session: AsyncSession,
    job_type: str | JobType,
    payload: Optional[Dict[str, Any]] = None,
    *,
    run_after: Optional[int] = None,
    delay: Optional[int] = None,
    dedupe_key: Optional[str] = None,
    max_attempts: Optional[int] = None,
    priority: Optional[int] = None,
    on_duplicate: DuplicatePolicy | str = DuplicatePolicy.IGNORE,
    settings: Optional[Settings] = None,
    now: Optional[int] = None,
) -> EnqueueResult:
    """Add a job to the queue, or hand back the active job holding dedupe_key.

    When the insert loses a race on the dedupe index the session is rolled
    back, so callers should commit unrelated work before enqueueing.

    With no max_attempts the job gets settings.default_max_attempts, read
    from the environment when no settings are passed.
    """
    kind = parse_job_type(job_type)
    data = validate_payload(kind, payload)
    policy = DuplicatePolicy(on_duplicate)
    attempts_allowed = max_attempts
    if attempts_allowed is None:
        attempts_allowed = (settings or Settings()).default_max_attempts
    if attempts_allowed < 1:
        raise InvalidJobError("max_attempts must be at least 1")
    if delay is not None and delay < 0:
        raise InvalidJobError("delay must not be negative")
    if dedupe_key is not None and not dedupe_key.strip():
        raise InvalidJobError("dedupe_key must not be blank")

    now = current_timestamp() if now is None else now
    due = run_after if run_after is not None else now + (delay or 0)

    if dedupe_key:
        existing = await store.find_active_by_dedupe_key(session, dedupe_key)
        if existing is not None:
            return await _handle_duplicate(session, existing, data, due, policy)

    job = Job(
        type=kind.value,
        status=JobStatus.PENDING.value,
        payload=data,
        priority=int(priority if priority is not None else DEFAULT_PRIORITIES.get(kind, JobPriority.NORMAL)),
        attempts=0,
        max_attempts=attempts_allowed,
        dedupe_key=dedupe_key,
        run_after=due,
        created_at=now,
    )
    try:
        job_id = await store.insert_job(session, job)
    except IntegrityError:
        if not dedupe_key:
            raise
        await session.rollback()
        winner = await store.find_active_by_dedupe_key(session, dedupe_key)
        if winner is None:
            raise
        logger.info(f"Lost enqueue race for dedupe key {dedupe_key}, using job {winner.id}")
        return await _handle_duplicate(session, winner, data, due, policy)

    logger.info(f"Job {job_id} of type {kind.value} queued, runnable at {due}")
    return EnqueueResult(job_id=job_id, created=True)


async def _handle_duplicate(
    session: AsyncSession,
    existing: Job,
    payload: Dict[str, Any],
    due: int,
    policy: DuplicatePolicy,
) -> EnqueueResult:
    assert existing.id is not None
    merged = False
    if policy is not DuplicatePolicy.IGNORE and existing.status == JobStatus.PENDING.value:
        values: Dict[str, Any] = {"payload": payload}
        if policy is DuplicatePolicy.RESCHEDULE:
            values["run_after"] = due
        merged = await store.update_pending_job(session, existing.id, values)

    logger.info(
        f"Dedupe hit on {existing.dedupe_key}: job {existing.id} ({existing.status}) "
        f"{'updated' if merged else 'left unchanged'}"
    )
    return EnqueueResult(job_id=existing.id, created=False, merged=merged)
