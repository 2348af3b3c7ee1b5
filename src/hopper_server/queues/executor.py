import asyncio
import contextlib
import inspect
import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, TypeAdapter
from pydantic_core import PydanticSerializationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hopper_server.database import current_timestamp, get_session
from hopper_server.errors import InvalidJobError, PermanentJobError
from hopper_server.models.jobs import Job
from hopper_server.queues import backoff, store
from hopper_server.queues.registry import Handler, HandlerRegistry, JobContext
from hopper_server.schemas.payloads import JobPayload, parse_payload
from hopper_server.settings import Settings

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class Outcome(str, Enum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    LEASE_LOST = "lease_lost"


def format_error(exc: BaseException) -> str:
    message = str(exc) or exc.__class__.__name__
    if not isinstance(exc, (PermanentJobError, InvalidJobError)):
        message = f"{exc.__class__.__name__}: {message}"
    return message[:MAX_ERROR_LENGTH]


_RESULT_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


def normalize_result(value: Any) -> Optional[Dict[str, Any]]:
    """Coerce a handler's return value into a JSON-safe dict.

    Dates, UUIDs, enums and models are converted the way pydantic dumps them
    in JSON mode. Anything pydantic cannot serialize is a PermanentJobError,
    since running the handler again would produce the same value.
    """
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    try:
        data = _RESULT_ADAPTER.dump_python(value, mode="json")
    except (PydanticSerializationError, TypeError, ValueError) as e:
        raise PermanentJobError(f"Handler result is not JSON serializable: {e}") from e
    if isinstance(data, dict):
        return data
    return {"value": data}


class Executor:
    """Runs one claimed job and writes its outcome back to the store."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry,
        settings: Settings,
        worker_id: str,
    ) -> None:
        self.session_maker = session_maker
        self.registry = registry
        self.settings = settings
        self.worker_id = worker_id

    async def execute(self, job: Job) -> Outcome:
        assert job.id is not None and job.lease_token is not None
        context = JobContext(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts + 1,
            max_attempts=job.max_attempts,
            worker_id=self.worker_id,
            lease_token=job.lease_token,
            session_maker=self.session_maker,
            loop=asyncio.get_running_loop(),
        )
        logger.info(f"Executing job {job.id} ({job.type}), attempt {context.attempt}/{job.max_attempts}")

        heartbeat = asyncio.create_task(self._heartbeat(job.id, job.lease_token))
        try:
            handler = self.registry.get(job.type)
            if handler is None:
                raise PermanentJobError(f"No handler registered for job type: {job.type}")
            payload = parse_payload(job.type, job.payload)
            result = normalize_result(await self._invoke(handler, payload, context))
        except Exception as e:
            logger.error(f"Job {job.id} ({job.type}) failed: {e}", exc_info=True)
            return await self._record_failure(job, e)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        try:
            return await self._record_success(job, result)
        except Exception as e:
            logger.error(f"Could not store result of job {job.id}: {e}", exc_info=True)
            return await self._record_failure(job, PermanentJobError(f"Could not store job result: {e}"))

    async def _invoke(self, handler: Handler, payload: JobPayload, context: JobContext) -> Any:
        timeout = self.settings.handler_timeout
        if inspect.iscoroutinefunction(handler):
            if timeout is None:
                return await handler(payload, context)
            try:
                return await asyncio.wait_for(handler(payload, context), timeout=timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(f"Handler timed out after {timeout:g}s") from None

        # A thread cannot be cancelled, so the lease stays held until it returns.
        thread = asyncio.ensure_future(asyncio.to_thread(handler, payload, context))
        if timeout is None:
            return await thread
        try:
            return await asyncio.wait_for(asyncio.shield(thread), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Job {context.job_id} handler passed its {timeout:g}s timeout, waiting for its thread to return"
            )
        with contextlib.suppress(Exception):
            await thread
        raise TimeoutError(f"Handler timed out after {timeout:g}s")

    async def _record_success(self, job: Job, result: Optional[Dict[str, Any]]) -> Outcome:
        assert job.id is not None and job.lease_token is not None
        async with get_session(self.session_maker) as session:
            updated = await store.complete_job(session, job.id, job.lease_token, result=result, now=current_timestamp())
        if not updated:
            logger.warning(f"Job {job.id} finished but its lease was lost, result discarded")
            return Outcome.LEASE_LOST
        logger.info(f"Job {job.id} ({job.type}) completed")
        return Outcome.COMPLETED

    async def _record_failure(self, job: Job, exc: BaseException) -> Outcome:
        assert job.id is not None and job.lease_token is not None
        now = current_timestamp()
        attempts = job.attempts + 1
        permanent = isinstance(exc, (PermanentJobError, InvalidJobError))
        next_run: Optional[int] = None
        if not permanent and attempts < job.max_attempts:
            next_run = backoff.retry_at(
                now,
                attempts,
                base=self.settings.backoff_base_seconds,
                cap=self.settings.backoff_max_seconds,
                jitter_ratio=self.settings.backoff_jitter_ratio,
                seed=job.id,
            )

        async with get_session(self.session_maker) as session:
            updated = await store.fail_job(
                session,
                job.id,
                job.lease_token,
                attempts=attempts,
                error=format_error(exc),
                retry_at=next_run,
                now=now,
            )

        if not updated:
            logger.warning(f"Job {job.id} failed but its lease was lost, failure not recorded")
            return Outcome.LEASE_LOST
        if next_run is not None:
            logger.info(f"Job {job.id} retry {attempts}/{job.max_attempts} scheduled in {next_run - now}s")
            return Outcome.RETRY_SCHEDULED
        logger.error(f"Job {job.id} ({job.type}) failed permanently after {attempts} attempt(s)")
        return Outcome.FAILED

    async def _heartbeat(self, job_id: int, lease_token: str) -> None:
        interval = max(1.0, self.settings.lease_seconds / 3)
        while True:
            await asyncio.sleep(interval)
            try:
                async with get_session(self.session_maker) as session:
                    renewed = await store.renew_lease(
                        session, job_id, lease_token, lease_seconds=self.settings.lease_seconds, now=current_timestamp()
                    )
            except Exception as e:
                logger.warning(f"Lease renewal for job {job_id} failed: {e}")
                continue
            if not renewed:
                logger.warning(f"Lease on job {job_id} could not be renewed")
                return
