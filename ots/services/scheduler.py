"""Background scheduler for the periodic maintenance jobs."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ots.middleware.rate_limit import SlidingWindowRateLimiter
from ots.services.expiration_sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "expiration_sweep"
REAP_JOB_ID = "rate_limit_reap"


class SchedulerService:
    """Owns the APScheduler instance running the sweeper and the limiter reaper.

    Created once per application and stopped on shutdown, so no job outlives
    the app that scheduled it.
    """

    def __init__(
        self,
        sweeper: ExpirationSweeper,
        limiter: Optional[SlidingWindowRateLimiter],
        sweep_interval: int = 300,
        reap_interval: int = 60,
    ) -> None:
        self.sweeper = sweeper
        self.limiter = limiter
        self.sweep_interval = sweep_interval
        self.reap_interval = reap_interval
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def start(self) -> None:
        """Start the scheduler.

        The sweep job runs once immediately, then every sweep_interval seconds.
        """
        if self.running:
            logger.debug("Scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone=UTC)

        self.scheduler.add_job(
            self._run_sweep,
            IntervalTrigger(seconds=self.sweep_interval),
            id=SWEEP_JOB_ID,
            name="Expired Secret Sweep",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            next_run_time=datetime.now(UTC),
        )

        if self.limiter is not None:
            self.scheduler.add_job(
                self._run_reap,
                IntervalTrigger(seconds=self.reap_interval),
                id=REAP_JOB_ID,
                name="Rate Limiter Reaper",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self.scheduler.start()
        logger.info(
            f"Background scheduler started: sweep every {self.sweep_interval}s, "
            f"reap every {self.reap_interval}s"
        )

    async def stop(self) -> None:
        """Stop the scheduler and drop its jobs."""
        if self.scheduler is None:
            return
        try:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
                # Give event loop a chance to process shutdown
                await asyncio.sleep(0)
            logger.info("Background scheduler stopped")
        except RuntimeError as e:
            logger.error(f"Scheduler shutdown error: {e}")
        finally:
            self.scheduler = None

    async def _run_sweep(self) -> None:
        await self.sweeper.sweep_once()

    async def _run_reap(self) -> None:
        if self.limiter is not None:
            self.limiter.reap()

    def get_status(self) -> dict:
        """Scheduler state and next run times, for diagnostics."""
        jobs = {}
        if self.scheduler is not None:
            for job in self.scheduler.get_jobs():
                jobs[job.id] = job.next_run_time.isoformat() if job.next_run_time else None
        return {
            "running": self.running,
            "jobs": jobs,
            "last_sweep_removed": self.sweeper.last_run_removed,
            "sweep_failures": self.sweeper.failures,
        }
