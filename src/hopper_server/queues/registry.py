"""Handler registry and the context handed to each handler call."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hopper_server.database import get_session
from hopper_server.queues import store
from hopper_server.schemas.jobs import JobType
from hopper_server.schemas.payloads import JobPayload

logger = logging.getLogger(__name__)

HandlerResult = Optional[Dict[str, Any]]
Handler = Callable[[Any, "JobContext"], Union[Awaitable[HandlerResult], HandlerResult]]


@dataclass
class JobContext:
    """What a handler may know about the job it runs, besides its payload.

    Coroutine handlers await report_progress. Plain-function handlers run
    in a worker thread and call report_progress_sync, which hands the write
    to the executor's event loop and blocks until it lands.
    """

    job_id: int
    job_type: str
    attempt: int
    max_attempts: int
    worker_id: str
    lease_token: str
    session_maker: async_sessionmaker[AsyncSession]
    loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    async def report_progress(self, percent: int, message: str) -> bool:
        async with get_session(self.session_maker) as session:
            updated = await store.update_progress(
                session, self.job_id, self.lease_token, percent=percent, message=message
            )
        if not updated:
            logger.warning(f"Progress for job {self.job_id} dropped, lease no longer held")
        return updated

    def report_progress_sync(self, percent: int, message: str) -> bool:
        if self.loop is None:
            raise RuntimeError("JobContext has no event loop to report progress on")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            raise RuntimeError("report_progress_sync called from the event loop, await report_progress instead")
        future = asyncio.run_coroutine_threadsafe(self.report_progress(percent, message), self.loop)
        return future.result()


class HandlerRegistry:
    """Maps job types to the callables that execute them."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def register(self, job_type: str | JobType, handler: Handler) -> None:
        key = JobType(job_type).value
        if key in self._handlers:
            logger.warning(f"Replacing handler for job type {key}")
        self._handlers[key] = handler

    def handler(self, job_type: str | JobType) -> Callable[[Handler], Handler]:
        """Decorator form of register."""

        def decorator(func: Handler) -> Handler:
            self.register(job_type, func)
            return func

        return decorator

    def get(self, job_type: str) -> Optional[Handler]:
        return self._handlers.get(job_type)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)


__all__ = ["Handler", "HandlerRegistry", "HandlerResult", "JobContext", "JobPayload"]
