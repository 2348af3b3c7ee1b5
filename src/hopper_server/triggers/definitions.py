"""Timer-driven jobs. Each trigger enqueues one fixed job type."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.queues.enqueue import EnqueueResult, enqueue
from hopper_server.schemas.jobs import JobType
from hopper_server.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Trigger:
    name: str
    job_type: JobType
    interval_seconds: Optional[int] = None
    crontab: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        # A tick that finds the previous run still queued or running is a no-op
        return f"cron:{self.name}"


TRIGGERS: Dict[str, Trigger] = {
    trigger.name: trigger
    for trigger in (
        Trigger("health-check", JobType.HEALTH_CHECK, interval_seconds=5 * 60),
        Trigger("collect-metrics", JobType.COLLECT_METRICS, interval_seconds=15 * 60),
        Trigger("generate-recommendations", JobType.GENERATE_RECOMMENDATIONS, crontab="0 3 * * *"),
    )
}


async def fire_trigger(session: AsyncSession, trigger: Trigger, settings: Settings) -> EnqueueResult:
    result = await enqueue(
        session,
        trigger.job_type,
        dict(trigger.payload),
        dedupe_key=trigger.dedupe_key,
        settings=settings,
    )
    if result.created:
        logger.info(f"Trigger {trigger.name} queued job {result.job_id}")
    else:
        logger.info(f"Trigger {trigger.name} skipped, job {result.job_id} still active")
    return result
