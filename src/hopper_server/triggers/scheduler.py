"""In-process timers using APScheduler."""

import asyncio
import logging
import signal
from typing import Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hopper_server.database import create_session_maker, ensure_sqlite_directory, get_session
from hopper_server.queues.leases import reap_expired_leases
from hopper_server.settings import Settings
from hopper_server.triggers.definitions import TRIGGERS, Trigger, fire_trigger

logger = logging.getLogger(__name__)


class TriggerScheduler:
    """Fires the lease reaper and, optionally, the cron triggers."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings,
        triggers: Optional[Iterable[Trigger]] = None,
    ):
        self.session_maker = session_maker
        self.settings = settings
        self.triggers = list(TRIGGERS.values() if triggers is None else triggers)
        self.scheduler = AsyncIOScheduler()

    def setup(self) -> None:
        self.scheduler.add_job(
            func=self.reap,
            trigger=IntervalTrigger(seconds=self.settings.reaper_interval_seconds),
            id="reap_expired_leases",
            name="Reap expired leases",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=30,
        )
        for trigger in self.triggers:
            self.scheduler.add_job(
                func=self.fire,
                args=[trigger.name],
                trigger=self._schedule_for(trigger),
                id=f"trigger_{trigger.name}",
                name=f"Trigger {trigger.name}",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )

    def start(self) -> None:
        """Start the scheduler on the running event loop."""
        self.setup()
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} timer(s)")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def reap(self) -> int:
        try:
            return await reap_expired_leases(self.session_maker, self.settings)
        except Exception as e:
            logger.error(f"Lease reaper failed: {e}", exc_info=True)
            return 0

    async def fire(self, trigger_name: str) -> Optional[int]:
        trigger = TRIGGERS[trigger_name]
        try:
            async with get_session(self.session_maker) as session:
                result = await fire_trigger(session, trigger, self.settings)
            return result.job_id
        except Exception as e:
            logger.error(f"Trigger {trigger_name} failed: {e}", exc_info=True)
            return None

    @staticmethod
    def _schedule_for(trigger: Trigger) -> IntervalTrigger | CronTrigger:
        if trigger.crontab:
            return CronTrigger.from_crontab(trigger.crontab)
        if trigger.interval_seconds:
            return IntervalTrigger(seconds=trigger.interval_seconds)
        raise ValueError(f"Trigger {trigger.name} has no schedule")


async def run_scheduler(settings: Settings) -> None:
    """Run the timers on their own, for deployments without an external cron."""
    ensure_sqlite_directory(settings.database_url)
    engine, session_maker = create_session_maker(settings.database_url)
    scheduler = TriggerScheduler(session_maker, settings)
    stopping = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stopping.set)

    scheduler.start()
    logger.info("Press Ctrl+C to stop")
    try:
        await stopping.wait()
    finally:
        scheduler.shutdown()
        await engine.dispose()


def main() -> None:
    """Entry point for the scheduler."""
    settings = Settings()
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
    asyncio.run(run_scheduler(settings))


if __name__ == "__main__":
    main()
