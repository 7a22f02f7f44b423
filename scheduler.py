import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from services import catch_up_all_users


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Posts due recurring occurrences for every user in the background.

    Runs once at startup, shortly after local midnight, and hourly as a safety
    net for a process that slept through midnight. Overlapping runs are
    coalesced into one since catch-up is not reentrant.
    """

    def __init__(self, catch_up_limit: Optional[int] = None) -> None:
        settings = get_settings()
        self.timezone = settings.timezone
        self.catch_up_limit = catch_up_limit or settings.scheduler_catch_up_limit
        self.last_run_count: Optional[int] = None
        self.scheduler = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )

    def run_once(self, source: str = "manual") -> int:
        logger.info(f"scheduler_run: source={source} limit={self.catch_up_limit}")
        with session_scope() as session:
            count = catch_up_all_users(session, max_occurrences=self.catch_up_limit)
        self.last_run_count = count
        logger.info(f"scheduler_run: source={source} occurrences_posted={count}")
        return count

    def _schedule(
        self, job_id: str, trigger: BaseTrigger, source: str, grace_seconds: int
    ) -> None:
        self.scheduler.add_job(
            self.run_once,
            trigger,
            args=[source],
            id=job_id,
            replace_existing=True,
            misfire_grace_time=grace_seconds,
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.run_once("startup")
        self._schedule(
            "recurring_daily",
            CronTrigger(hour=0, minute=5, timezone=self.timezone),
            "daily_00:05",
            3600,
        )
        self._schedule(
            "recurring_hourly_safety",
            IntervalTrigger(hours=1, timezone=self.timezone),
            "hourly_safety_net",
            300,
        )
        self.scheduler.start()
        logger.info(f"scheduler_started: timezone={self.timezone}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")
