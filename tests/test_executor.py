import asyncio
import threading
import time
from datetime import date, datetime
from typing import Any, Dict, List

import pytest

from hopper_server.database import get_session
from hopper_server.errors import PermanentJobError
from hopper_server.queues import store
from hopper_server.queues.enqueue import enqueue
from hopper_server.queues.executor import Executor, Outcome, format_error, normalize_result
from hopper_server.queues.leases import claim_jobs, reap_expired_leases
from hopper_server.queues.registry import HandlerRegistry, JobContext
from hopper_server.schemas.jobs import JobType
from hopper_server.schemas.payloads import HealthCheckPayload, TranscribePayload

FAR_FUTURE = 4_000_000_000


async def _enqueue(session_maker, job_type=JobType.HEALTH_CHECK, payload=None, **kwargs) -> int:
    async with get_session(session_maker) as session:
        result = await enqueue(session, job_type, payload, **kwargs)
    return result.job_id


async def _claim_one(session_maker, now=None):
    jobs = await claim_jobs(session_maker, worker_id="test-worker", limit=1, lease_seconds=60, now=now)
    assert len(jobs) == 1
    return jobs[0]


async def _get(session_maker, job_id: int):
    async with get_session(session_maker, read_only=True) as session:
        return await store.get_job(session, job_id)


@pytest.mark.asyncio
async def test_successful_handler_completes_job(session_maker, settings) -> None:
    registry = HandlerRegistry()
    seen: List[Any] = []

    @registry.handler(JobType.TRANSCRIBE)
    async def transcribe(payload: TranscribePayload, context: JobContext) -> Dict[str, Any]:
        seen.append((payload, context.attempt, context.is_last_attempt))
        assert await context.report_progress(50, "Halfway")
        return {"words": 120}

    job_id = await _enqueue(session_maker, JobType.TRANSCRIBE, {"content_id": "rec-1"})
    job = await _claim_one(session_maker)

    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(job)

    assert outcome is Outcome.COMPLETED
    [(payload, attempt, last)] = seen
    assert isinstance(payload, TranscribePayload)
    assert payload.content_id == "rec-1"
    assert attempt == 1
    assert not last
    stored = await _get(session_maker, job_id)
    assert stored.status == "completed"
    assert stored.result == {"words": 120}
    assert stored.completed_at is not None
    assert stored.started_at is not None
    assert stored.progress_percent == 100
    assert stored.lease_token is None
    assert stored.error is None


@pytest.mark.asyncio
async def test_sync_handler_runs_in_thread(session_maker, settings) -> None:
    registry = HandlerRegistry()
    registry.register(JobType.HEALTH_CHECK, lambda payload, context: {"stuck_after": payload.stuck_after_seconds})

    job_id = await _enqueue(session_maker, payload={"stuck_after_seconds": 60})
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.COMPLETED
    assert (await _get(session_maker, job_id)).result == {"stuck_after": 60}


@pytest.mark.asyncio
async def test_failing_handler_exhausts_retries(session_maker, settings) -> None:
    registry = HandlerRegistry()
    attempts: List[int] = []

    @registry.handler(JobType.HEALTH_CHECK)
    async def always_fails(payload: HealthCheckPayload, context: JobContext) -> None:
        attempts.append(context.attempt)
        raise RuntimeError("database unreachable")

    job_id = await _enqueue(session_maker, max_attempts=3)
    executor = Executor(session_maker, registry, settings, "test-worker")

    outcomes = []
    run_afters = []
    for _ in range(3):
        outcomes.append(await executor.execute(await _claim_one(session_maker, now=FAR_FUTURE)))
        stored = await _get(session_maker, job_id)
        run_afters.append(stored.run_after)

    assert outcomes == [Outcome.RETRY_SCHEDULED, Outcome.RETRY_SCHEDULED, Outcome.FAILED]
    assert attempts == [1, 2, 3]
    assert run_afters[1] - run_afters[0] >= 2
    stored = await _get(session_maker, job_id)
    assert stored.status == "failed"
    assert stored.attempts == 3
    assert stored.error == "RuntimeError: database unreachable"
    assert stored.completed_at is not None
    assert await claim_jobs(session_maker, worker_id="w", limit=1, lease_seconds=60, now=FAR_FUTURE) == []


@pytest.mark.asyncio
async def test_retry_is_delayed_by_backoff(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def flaky(payload: HealthCheckPayload, context: JobContext) -> None:
        raise ConnectionError("reset by peer")

    job_id = await _enqueue(session_maker)
    job = await _claim_one(session_maker)
    await Executor(session_maker, registry, settings, "test-worker").execute(job)

    stored = await _get(session_maker, job_id)
    assert stored.status == "pending"
    assert stored.attempts == 1
    assert stored.run_after >= job.started_at + 2
    assert stored.error == "ConnectionError: reset by peer"
    assert stored.lease_token is None


@pytest.mark.asyncio
async def test_permanent_error_skips_retries(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def broken(payload: HealthCheckPayload, context: JobContext) -> None:
        raise PermanentJobError("recording was deleted")

    job_id = await _enqueue(session_maker, max_attempts=5)
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.FAILED
    stored = await _get(session_maker, job_id)
    assert stored.status == "failed"
    assert stored.attempts == 1
    assert stored.error == "recording was deleted"


@pytest.mark.asyncio
async def test_unregistered_type_fails_without_retry(session_maker, settings) -> None:
    job_id = await _enqueue(session_maker, JobType.COMPRESS_AUDIO, {"content_id": "c", "storage_path": "a/b.wav"})

    outcome = await Executor(session_maker, HandlerRegistry(), settings, "test-worker").execute(
        await _claim_one(session_maker)
    )

    assert outcome is Outcome.FAILED
    stored = await _get(session_maker, job_id)
    assert stored.status == "failed"
    assert stored.error == "No handler registered for job type: compress_audio"


@pytest.mark.asyncio
async def test_handler_timeout_counts_as_failed_attempt(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def hangs(payload: HealthCheckPayload, context: JobContext) -> None:
        await asyncio.sleep(10)

    job_id = await _enqueue(session_maker)
    quick = settings.model_copy(update={"handler_timeout_seconds": 0.05})
    outcome = await Executor(session_maker, registry, quick, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.RETRY_SCHEDULED
    stored = await _get(session_maker, job_id)
    assert stored.attempts == 1
    assert stored.error.startswith("TimeoutError: Handler timed out")


@pytest.mark.asyncio
async def test_sync_handler_keeps_its_lease_past_the_timeout(session_maker, settings) -> None:
    registry = HandlerRegistry()
    lock = threading.Lock()
    counts = {"running": 0, "peak": 0, "calls": 0}

    @registry.handler(JobType.HEALTH_CHECK)
    def blocks(payload: HealthCheckPayload, context: JobContext) -> None:
        with lock:
            counts["calls"] += 1
            counts["running"] += 1
            counts["peak"] = max(counts["peak"], counts["running"])
        time.sleep(0.5)
        with lock:
            counts["running"] -= 1

    job_id = await _enqueue(session_maker)
    quick = settings.model_copy(update={"handler_timeout_seconds": 0.05})
    first = asyncio.create_task(
        Executor(session_maker, registry, quick, "worker-a").execute(await _claim_one(session_maker))
    )

    await asyncio.sleep(0.2)
    assert (await _get(session_maker, job_id)).status == "processing"
    assert await claim_jobs(session_maker, worker_id="worker-b", limit=1, lease_seconds=60, now=FAR_FUTURE) == []

    assert await first is Outcome.RETRY_SCHEDULED
    assert counts["running"] == 0
    stored = await _get(session_maker, job_id)
    assert stored.status == "pending"
    assert stored.error.startswith("TimeoutError: Handler timed out")

    second = await _claim_one(session_maker, now=FAR_FUTURE)
    assert await Executor(session_maker, registry, quick, "worker-b").execute(second) is Outcome.RETRY_SCHEDULED
    assert counts["calls"] == 2
    assert counts["peak"] == 1


@pytest.mark.asyncio
async def test_sync_handler_reports_progress(session_maker, settings) -> None:
    registry = HandlerRegistry()
    seen: List[Any] = []

    @registry.handler(JobType.HEALTH_CHECK)
    def reports(payload: HealthCheckPayload, context: JobContext) -> None:
        reported = context.report_progress_sync(40, "Halfway")
        job = asyncio.run_coroutine_threadsafe(_get(session_maker, context.job_id), context.loop).result()
        seen.append((reported, job.progress_percent, job.progress_message))

    job_id = await _enqueue(session_maker)
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.COMPLETED
    assert seen == [(True, 40, "Halfway")]
    assert (await _get(session_maker, job_id)).progress_percent == 100


@pytest.mark.asyncio
async def test_blocking_progress_call_is_refused_on_the_event_loop(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def wrong_call(payload: HealthCheckPayload, context: JobContext) -> None:
        context.report_progress_sync(10, "Blocking")

    job_id = await _enqueue(session_maker, max_attempts=1)
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.FAILED
    assert "await report_progress instead" in (await _get(session_maker, job_id)).error


@pytest.mark.asyncio
async def test_dates_in_result_are_stored_as_iso_strings(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def dated(payload: HealthCheckPayload, context: JobContext) -> Dict[str, Any]:
        return {"at": datetime(2024, 1, 1)}

    job_id = await _enqueue(session_maker)
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.COMPLETED
    assert (await _get(session_maker, job_id)).result == {"at": "2024-01-01T00:00:00"}


@pytest.mark.asyncio
async def test_unserializable_result_fails_without_retry(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def opaque(payload: HealthCheckPayload, context: JobContext) -> Dict[str, Any]:
        return {"handle": object()}

    job_id = await _enqueue(session_maker, max_attempts=3)
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.FAILED
    stored = await _get(session_maker, job_id)
    assert stored.status == "failed"
    assert stored.attempts == 1
    assert stored.lease_token is None
    assert stored.error.startswith("Handler result is not JSON serializable")

@pytest.mark.asyncio
async def test_result_is_discarded_when_lease_was_lost(session_maker, settings) -> None:
    registry = HandlerRegistry()

    @registry.handler(JobType.HEALTH_CHECK)
    async def slow(payload: HealthCheckPayload, context: JobContext) -> Dict[str, Any]:
        # Another process decides this worker is gone
        assert await reap_expired_leases(context.session_maker, settings, now=FAR_FUTURE) == 1
        assert not await context.report_progress(90, "Almost")
        return {"ok": True}

    job_id = await _enqueue(session_maker)
    outcome = await Executor(session_maker, registry, settings, "test-worker").execute(await _claim_one(session_maker))

    assert outcome is Outcome.LEASE_LOST
    stored = await _get(session_maker, job_id)
    assert stored.status == "pending"
    assert stored.attempts == 1
    assert stored.result is None


def test_format_error() -> None:
    assert format_error(ValueError("bad")) == "ValueError: bad"
    assert format_error(PermanentJobError("gone")) == "gone"
    assert format_error(KeyError()) == "KeyError: KeyError"
    assert len(format_error(RuntimeError("x" * 5000))) == 2000


def test_normalize_result() -> None:
    assert normalize_result(None) is None
    assert normalize_result({"a": 1}) == {"a": 1}
    assert normalize_result(HealthCheckPayload()) == {"stuck_after_seconds": 3600}
    assert normalize_result(7) == {"value": 7}
    assert normalize_result({"on": date(2024, 1, 1)}) == {"on": "2024-01-01"}
    with pytest.raises(PermanentJobError):
        normalize_result({"handle": object()})
