import asyncio
import contextlib
import logging
import os
import socket
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hopper_server.queues.executor import Executor, Outcome
from hopper_server.queues.leases import claim_job_by_id, claim_jobs
from hopper_server.queues.registry import HandlerRegistry
from hopper_server.settings import Settings

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class Worker:
    """Polls the store, claims due jobs and runs them.

    Workers share nothing but the database, so any number of them may run
    side by side.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry,
        settings: Settings,
        worker_id: Optional[str] = None,
    ) -> None:
        self.session_maker = session_maker
        self.settings = settings
        self.worker_id = worker_id or default_worker_id()
        self.executor = Executor(session_maker, registry, settings, self.worker_id)
        self._stopping = asyncio.Event()

    async def run_once(self) -> int:
        """Claim one batch and run it to completion. Returns the batch size."""
        jobs = await claim_jobs(
            self.session_maker,
            worker_id=self.worker_id,
            limit=self.settings.worker_batch_size,
            lease_seconds=self.settings.lease_seconds,
        )
        if not jobs:
            return 0

        outcomes = await asyncio.gather(*(self.executor.execute(job) for job in jobs), return_exceptions=True)
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Could not record outcome of job {job.id}: {outcome}", exc_info=outcome)
        return len(jobs)

    async def run_job(self, job_id: int) -> Outcome:
        """Run one pending job now, ahead of its run_after and of the queue order."""
        job = await claim_job_by_id(
            self.session_maker, job_id, worker_id=self.worker_id, lease_seconds=self.settings.lease_seconds
        )
        return await self.executor.execute(job)

    async def run_forever(self) -> None:
        """Poll until stop() is called, backing off while the queue is idle."""
        base = self.settings.poll_interval_seconds
        ceiling = self.settings.max_poll_interval_seconds
        interval = base
        empty_polls = 0
        logger.info(f"Worker {self.worker_id} started (batch size {self.settings.worker_batch_size})")

        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.error(f"Worker {self.worker_id} poll failed: {e}", exc_info=True)
                processed = 0

            if processed:
                if empty_polls:
                    logger.debug(f"Jobs detected, poll interval reset to {base}s")
                empty_polls = 0
                interval = base
                continue

            empty_polls += 1
            interval = min(base * 2**empty_polls, ceiling)
            if empty_polls == 1 or empty_polls % 5 == 0:
                logger.debug(f"Queue idle after {empty_polls} poll(s), next poll in {interval}s")
            await self._sleep(interval)

        logger.info(f"Worker {self.worker_id} stopped")

    def stop(self) -> None:
        self._stopping.set()

    async def _sleep(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
