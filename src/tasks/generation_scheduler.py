"""
Generation Scheduler

Server-side jobs that keep generation state moving without a browser:
- poll: every POLL_INTERVAL_SECONDS, query upstream for processing videos
- auto-retry: every minute, re-arm failed videos per AutoRetrySettings
- plan expiry: hourly, mark overdue paid plans as expired
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import POLL_INTERVAL_SECONDS
from src.database.engine import get_session_maker
from src.database.limit_manager import expire_overdue_plans
from src.services import generation_service
from src.services.storage_service import MediaStorage
from src.services.veo_service import VeoClient


class GenerationScheduler:
    """
    APScheduler wrapper for generation jobs.

    Jobs:
    - generation_poll: drive processing rows to a terminal state
    - generation_auto_retry: retry failed rows
    - plan_expiry: expire overdue plans
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        client: Optional[VeoClient] = None,
        storage: Optional[MediaStorage] = None,
        poll_interval: int = POLL_INTERVAL_SECONDS,
    ):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self.session_factory = session_factory
        self.client = client
        self.storage = storage
        self.poll_interval = poll_interval

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self.session_factory or get_session_maker()

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start scheduler."""
        if self._running:
            logger.warning("Generation scheduler already running")
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._job_poll,
            IntervalTrigger(seconds=self.poll_interval),
            id="generation_poll",
            name="Poll processing videos",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.add_job(
            self._job_auto_retry,
            IntervalTrigger(minutes=1),
            id="generation_auto_retry",
            name="Auto-retry failed videos",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.add_job(
            self._job_expire_plans,
            IntervalTrigger(hours=1),
            id="plan_expiry",
            name="Expire overdue plans",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True

        logger.info(
            f"Generation scheduler started: poll every {self.poll_interval}s, "
            f"auto-retry every 60s, plan expiry hourly"
        )

    def stop(self):
        """Stop scheduler."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Generation scheduler stopped")

    async def _job_poll(self) -> int:
        """Job: poll processing videos."""
        try:
            return await generation_service.poll_processing_videos(
                self._sessions(),
                client=self.client,
                min_age_seconds=self.poll_interval,
            )
        except Exception as e:
            logger.exception(f"Poll job failed: {e}")
            return 0

    async def _job_auto_retry(self) -> list:
        """Job: auto-retry failed videos."""
        try:
            async with self._sessions()() as session:
                retried = await generation_service.auto_retry_failed(
                    session, client=self.client, storage=self.storage
                )
            if retried:
                logger.info(f"Auto-retry re-armed {len(retried)} videos")
            return retried
        except Exception as e:
            logger.exception(f"Auto-retry job failed: {e}")
            return []

    async def _job_expire_plans(self) -> int:
        """Job: expire overdue plans."""
        try:
            async with self._sessions()() as session:
                expired = await expire_overdue_plans(session)
            if expired:
                logger.info(f"Marked {expired} plans as expired")
            return expired
        except Exception as e:
            logger.exception(f"Plan expiry job failed: {e}")
            return 0


# Global instance
generation_scheduler = GenerationScheduler()
