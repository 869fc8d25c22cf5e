# newsagg/services/scheduler.py
"""
Background jobs: periodic category refresh and quota rollover.

Jobs call the same FeedService.refresh and QuotaLedger.reset used by the
admin routes, so background work never takes a separate code path.
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from newsagg.logging_config import component_var
from newsagg.schemas.article import RequestClass
from newsagg.services.feed_service import FeedService
from newsagg.services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)


class AggregationScheduler:
    """Owns the AsyncIOScheduler and its jobs."""

    def __init__(
        self,
        feed_service: FeedService,
        ledger: QuotaLedger,
        categories: tuple[str, ...],
        refresh_interval_minutes: int = 30,
        timezone_name: str = "Asia/Kolkata",
        target_count: int = 30,
    ):
        self.feed_service = feed_service
        self.ledger = ledger
        self.categories = categories
        self.refresh_interval_minutes = refresh_interval_minutes
        self.timezone_name = timezone_name
        self.target_count = target_count
        self._scheduler: AsyncIOScheduler | None = None
        self._last_runs: dict[str, datetime] = {}
        self._failures: dict[str, str] = {}

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=self.timezone_name)
        # Stagger categories across the interval so providers are not hit all at once
        stagger = timedelta(minutes=self.refresh_interval_minutes) / max(1, len(self.categories))
        first_run = datetime.now(timezone.utc) + timedelta(seconds=5)
        for index, category in enumerate(self.categories):
            scheduler.add_job(
                self.refresh_category,
                IntervalTrigger(
                    minutes=self.refresh_interval_minutes,
                    start_date=first_run + stagger * index,
                    timezone=self.timezone_name,
                ),
                args=[category],
                id=f"refresh:{category}",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )
        scheduler.add_job(
            self.rollover_quota,
            CronTrigger(minute=0, timezone=self.timezone_name),
            id="quota:rollover",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            f"Scheduler started: {len(self.categories)} categories every {self.refresh_interval_minutes}m, "
            f"hourly quota rollover ({self.timezone_name})"
        )

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def refresh_category(self, category: str) -> None:
        component_var.set("scheduler")
        job = f"refresh:{category}"
        try:
            batch = await self.feed_service.refresh(
                category,
                target_count=self.target_count,
                request_class=RequestClass.BACKGROUND,
            )
            self._last_runs[job] = datetime.now(timezone.utc)
            self._failures.pop(job, None)
            logger.info(
                f"Background refresh {category}: {batch.status.value}, {len(batch.articles)} articles",
                extra={"event": "background_refresh", "category": category, "job_id": job},
            )
        except Exception as e:
            self._failures[job] = str(e)
            logger.error(f"Background refresh {category} failed: {e}", exc_info=True, extra={"job_id": job})

    async def rollover_quota(self) -> None:
        component_var.set("scheduler")
        job = "quota:rollover"
        try:
            await self.ledger.reset()
            self._last_runs[job] = datetime.now(timezone.utc)
            self._failures.pop(job, None)
        except Exception as e:
            self._failures[job] = str(e)
            logger.error(f"Quota rollover failed: {e}", exc_info=True, extra={"job_id": job})

    def get_status(self) -> dict:
        jobs = []
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                jobs.append(
                    {
                        "id": job.id,
                        "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                        "last_run": self._last_runs[job.id].isoformat() if job.id in self._last_runs else None,
                        "last_error": self._failures.get(job.id),
                    }
                )
        return {"running": self.running, "jobs": jobs}
