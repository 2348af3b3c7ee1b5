import asyncio

import pytest

from hopper_server.database import get_session
from hopper_server.errors import InvalidTransitionError, JobNotFoundError
from hopper_server.handlers import default_registry
from hopper_server.queues import store
from hopper_server.queues.enqueue import enqueue
from hopper_server.queues.executor import Outcome
from hopper_server.queues.registry import HandlerRegistry
from hopper_server.queues.worker import Worker, default_worker_id
from hopper_server.schemas.jobs import JobType
from hopper_server.worker import run_single_job


@pytest.mark.asyncio
async def test_run_once_processes_a_batch(session_maker, settings) -> None:
    async with get_session(session_maker) as session:
        ids = [(await enqueue(session, JobType.HEALTH_CHECK)).job_id for _ in range(3)]

    worker = Worker(session_maker, default_registry(), settings, worker_id="worker-1")
    assert await worker.run_once() == 3
    assert await worker.run_once() == 0

    async with get_session(session_maker, read_only=True) as session:
        for job_id in ids:
            job = await store.get_job(session, job_id)
            assert job.status == "completed"
            assert job.worker_id == "worker-1"
            assert "score" in job.result


@pytest.mark.asyncio
async def test_one_failing_job_does_not_affect_the_batch(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.TRANSCRIBE)
    async def transcribe(payload, context):
        if payload.content_id == "bad":
            raise RuntimeError("corrupt media")
        return {"content_id": payload.content_id}

    async with get_session(session_maker) as session:
        good = await enqueue(session, JobType.TRANSCRIBE, {"content_id": "good"})
        bad = await enqueue(session, JobType.TRANSCRIBE, {"content_id": "bad"})

    await Worker(session_maker, registry, settings).run_once()

    async with get_session(session_maker, read_only=True) as session:
        assert (await store.get_job(session, good.job_id)).status == "completed"
        failed = await store.get_job(session, bad.job_id)
    assert failed.status == "pending"
    assert failed.attempts == 1


@pytest.mark.asyncio
async def test_run_forever_stops_when_asked(session_maker, settings) -> None:
    fast = settings.model_copy(update={"poll_interval_seconds": 0.01, "max_poll_interval_seconds": 0.05})
    worker = Worker(session_maker, default_registry(), fast)

    task = asyncio.create_task(worker.run_forever())
    async with get_session(session_maker) as session:
        job = await enqueue(session, JobType.HEALTH_CHECK)

    for _ in range(200):
        async with get_session(session_maker, read_only=True) as session:
            if (await store.get_job(session, job.job_id)).status == "completed":
                break
        await asyncio.sleep(0.02)

    worker.stop()
    await asyncio.wait_for(task, timeout=2)

    async with get_session(session_maker, read_only=True) as session:
        assert (await store.get_job(session, job.job_id)).status == "completed"


def test_default_worker_ids_are_unique() -> None:
    assert default_worker_id() != default_worker_id()


def test_default_registry_loads_handler_modules() -> None:
    registry = default_registry()
    assert registry.job_types == ["health_check"]

    with pytest.raises(ImportError):
        default_registry(["hopper_server.settings"])


@pytest.mark.asyncio
async def test_run_job_runs_a_delayed_job_now(session_maker, settings) -> None:
    async with get_session(session_maker) as session:
        later = (await enqueue(session, JobType.HEALTH_CHECK, delay=3600)).job_id
        other = (await enqueue(session, JobType.COLLECT_METRICS)).job_id

    worker = Worker(session_maker, default_registry(), settings, worker_id="worker-1")
    assert await worker.run_job(later) is Outcome.COMPLETED

    async with get_session(session_maker, read_only=True) as session:
        job = await store.get_job(session, later)
        assert job.status == "completed"
        assert job.worker_id == "worker-1"
        assert (await store.get_job(session, other)).status == "pending"


@pytest.mark.asyncio
async def test_run_job_only_takes_pending_jobs(session_maker, settings) -> None:
    async with get_session(session_maker) as session:
        job_id = (await enqueue(session, JobType.HEALTH_CHECK)).job_id

    worker = Worker(session_maker, default_registry(), settings, worker_id="worker-1")
    assert await worker.run_job(job_id) is Outcome.COMPLETED

    with pytest.raises(InvalidTransitionError, match="Cannot run job"):
        await worker.run_job(job_id)
    with pytest.raises(JobNotFoundError):
        await worker.run_job(job_id + 100)


@pytest.mark.asyncio
async def test_run_single_job_uses_its_own_engine(session_maker, settings) -> None:
    async with get_session(session_maker) as session:
        job_id = (await enqueue(session, JobType.HEALTH_CHECK, delay=600)).job_id

    assert await run_single_job(settings, job_id, worker_id="cli") is Outcome.COMPLETED
