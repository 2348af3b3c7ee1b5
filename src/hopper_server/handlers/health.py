"""Built-in health check: reports on the queue itself."""

import logging
from typing import Any, Dict

from sqlalchemy import func
from sqlmodel import col, select

from hopper_server.database import current_timestamp, get_session
from hopper_server.models.jobs import Job
from hopper_server.queues import store
from hopper_server.queues.registry import JobContext
from hopper_server.schemas.jobs import JobStatus
from hopper_server.schemas.payloads import HealthCheckPayload

logger = logging.getLogger(__name__)

DEGRADED_SCORE = 70


def score_queue(counts: Dict[str, int], overdue: int, stuck: int) -> int:
    total = sum(counts.values())
    if total == 0:
        return 100
    failed_ratio = counts.get(JobStatus.FAILED.value, 0) / total
    score = 100 - round(failed_ratio * 50) - min(30, overdue) - min(20, stuck * 5)
    return max(0, score)


async def perform_health_check(payload: HealthCheckPayload, context: JobContext) -> Dict[str, Any]:
    now = current_timestamp()
    async with get_session(context.session_maker, read_only=True) as session:
        counts = await store.count_by_status(session)
        overdue = await session.execute(
            select(func.count())
            .select_from(Job)
            .where(
                col(Job.status) == JobStatus.PENDING.value,
                col(Job.run_after) < now - payload.stuck_after_seconds,
            )
        )
        stuck = await session.execute(
            select(func.count())
            .select_from(Job)
            .where(
                col(Job.status) == JobStatus.PROCESSING.value,
                col(Job.started_at) < now - payload.stuck_after_seconds,
            )
        )
        overdue_count = overdue.scalar_one()
        stuck_count = stuck.scalar_one()

    score = score_queue(counts, overdue_count, stuck_count)
    if score < DEGRADED_SCORE:
        logger.warning(f"Queue health degraded: score {score}, overdue {overdue_count}, stuck {stuck_count}")
    else:
        logger.info(f"Queue health score {score}")

    return {
        "score": score,
        "counts": counts,
        "overdue_pending": overdue_count,
        "stuck_processing": stuck_count,
        "checked_at": now,
    }
