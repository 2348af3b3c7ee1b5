"""Worker process: claims and runs jobs, and sweeps expired leases."""

import asyncio
import logging
import signal
from typing import Optional

from hopper_server.database import create_session_maker, ensure_sqlite_directory
from hopper_server.handlers import default_registry
from hopper_server.queues.executor import Outcome
from hopper_server.queues.worker import Worker
from hopper_server.settings import Settings
from hopper_server.triggers.scheduler import TriggerScheduler

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings, worker_id: Optional[str] = None) -> None:
    ensure_sqlite_directory(settings.database_url)
    engine, session_maker = create_session_maker(settings.database_url)
    registry = default_registry(settings.handler_modules)
    worker = Worker(session_maker, registry, settings, worker_id=worker_id)

    # Cron triggers normally arrive over HTTP; the reaper always runs here
    scheduler = TriggerScheduler(session_maker, settings, triggers=None if settings.run_triggers_in_worker else [])

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, worker.stop)

    logger.info(f"Handlers registered for: {', '.join(registry.job_types) or 'none'}")
    scheduler.start()
    try:
        await worker.run_forever()
    finally:
        scheduler.shutdown()
        await engine.dispose()
        logger.info("Worker shutdown completed")


async def run_single_job(settings: Settings, job_id: int, worker_id: Optional[str] = None) -> Outcome:
    ensure_sqlite_directory(settings.database_url)
    engine, session_maker = create_session_maker(settings.database_url)
    try:
        worker = Worker(session_maker, default_registry(settings.handler_modules), settings, worker_id=worker_id)
        return await worker.run_job(job_id)
    finally:
        await engine.dispose()


def main() -> None:
    settings = Settings()
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
