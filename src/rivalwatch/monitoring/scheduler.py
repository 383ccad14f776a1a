"""Monitoring job lifecycle: creation, due-job selection, retry/backoff, pause/resume.

The scheduler owns the job state arithmetic. The processor calls
mark_running / record_success / record_failure around each attempt; the
scheduler decides what those transitions mean:

- success: pending, retry_count reset, next_run_at from frequency
- failure: retry_count += 1; failed once retry_count >= max_retries,
  otherwise pending with next_run_at = now + 2**retry_count minutes

Social jobs are created per platform handle; website and careers-page jobs
per competitor URL. Both kinds share the same retry arithmetic.

Also provides create_scheduler() for the APScheduler instance that drives
the periodic processing cycle.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rivalwatch.db.base import utcnow
from rivalwatch.exceptions import DatabaseError
from rivalwatch.monitoring.models import Competitor, MonitoringJob
from rivalwatch.monitoring.schemas import (
    JobPostingJobConfig,
    JobResponse,
    JobResultResponse,
    MonitoringConfig,
    MonitoringConfigUpdate,
    MonitoringStats,
    MonitoringStatus,
    PageMonitoringConfig,
    SocialMediaJobConfig,
    WebsiteJobConfig,
)
from rivalwatch.monitoring.sources import platform_url
from rivalwatch.monitoring.store import CompetitorDirectory, JobStore

logger = logging.getLogger(__name__)

FREQUENCY_INTERVALS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}

DEFAULT_MAX_RETRIES = 3

PAGE_JOB_TYPES = ("website", "job_posting")

LESS_FREQUENT = {"hourly": "daily", "daily": "weekly", "weekly": "weekly"}


def create_scheduler() -> AsyncIOScheduler:
    """Create APScheduler with an in-memory job store.

    Only the processing timer lives in APScheduler; monitoring job state is
    persisted in scraping_jobs, so nothing is lost across restarts.
    """
    return AsyncIOScheduler(jobstores={"default": MemoryJobStore()})


def calculate_next_run(frequency: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Next due time for a frequency. Unknown frequencies fall back to daily."""
    now = now or utcnow()
    return now + FREQUENCY_INTERVALS.get(frequency or "daily", FREQUENCY_INTERVALS["daily"])


def backoff_delay(retry_count: int) -> timedelta:
    """Exponential backoff: 2, 4, 8... minutes for retry 1, 2, 3..."""
    return timedelta(minutes=2**retry_count)


def job_platform(job: MonitoringJob) -> Optional[str]:
    return (job.config or {}).get("platform")


def _absolute_url(url: Optional[str]) -> Optional[str]:
    url = (url or "").strip()
    if not url:
        return None
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


class MonitoringScheduler:
    """Owns MonitoringJob lifecycle for one database session.

    Args:
        db: Session used for every read and write.
        clock: Returns the current aware UTC time. Injected by tests.
        max_retries: max_retries stamped on newly created jobs.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.db = db
        self.clock = clock
        self.max_retries = max_retries
        self.jobs = JobStore(db)
        self.competitors = CompetitorDirectory(db)

    # ---------- creation ----------

    def schedule_monitoring(
        self,
        competitor_id: int,
        user_id: str,
        config: Optional[MonitoringConfig] = None,
    ) -> list[str]:
        """Create one social-media job per requested platform.

        Platforms without a handle on the competitor record are skipped
        silently, as are platforms that already have a job.

        Returns:
            Ids of the jobs created by this call.

        Raises:
            CompetitorNotFoundError: competitor does not belong to user_id.
            DatabaseError: the inserts failed.
        """
        config = config or MonitoringConfig()
        competitor = self.competitors.get(competitor_id, user_id)
        try:
            existing = {
                job_platform(job)
                for job in self.jobs.select_by_competitor(competitor_id, user_id)
            }
            created = self._create_jobs(competitor, user_id, config.platforms, config, existing)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError(
                "Failed to schedule monitoring",
                detail=f"competitor_id={competitor_id}: {exc}",
            ) from exc

        logger.info(
            "Scheduled %d monitoring jobs for competitor %d (%s)",
            len(created), competitor_id, ", ".join(config.platforms),
        )
        return created

    def _create_jobs(
        self,
        competitor: Competitor,
        user_id: str,
        platforms: list[str],
        config: MonitoringConfig,
        existing: set,
    ) -> list[str]:
        now = self.clock()
        created = []
        for platform in platforms:
            if platform in existing:
                logger.debug(
                    "Competitor %d already has a %s job; not duplicating",
                    competitor.id, platform,
                )
                continue
            handle = CompetitorDirectory.handle_for(competitor, platform)
            if not handle:
                continue

            job_config = SocialMediaJobConfig(
                platform=platform,
                handle=handle,
                monitoring_config=config.model_dump(),
            )
            job = self.jobs.insert(
                MonitoringJob(
                    competitor_id=competitor.id,
                    user_id=user_id,
                    job_type="social_media",
                    url=platform_url(platform, handle),
                    priority=config.priority,
                    frequency_type="interval",
                    frequency_value=config.frequency,
                    status="pending" if config.enabled else "paused",
                    retry_count=0,
                    max_retries=self.max_retries,
                    next_run_at=calculate_next_run(config.frequency, now),
                    config=job_config.model_dump(),
                )
            )
            existing.add(platform)
            created.append(job.id)
        return created

    def schedule_page_monitoring(
        self,
        competitor_id: int,
        user_id: str,
        config: Optional[PageMonitoringConfig] = None,
    ) -> list[str]:
        """Create a website job and, optionally, a careers-page job.

        Competitors without a website (and no explicit URL) get no jobs. A
        job already watching the same URL is not duplicated. The careers
        job runs at low priority, one frequency step less often.

        Returns:
            Ids of the jobs created by this call.

        Raises:
            CompetitorNotFoundError: competitor does not belong to user_id.
            DatabaseError: the inserts failed.
        """
        config = config or PageMonitoringConfig()
        competitor = self.competitors.get(competitor_id, user_id)
        website = _absolute_url(config.website_url or competitor.website)
        if website is None:
            logger.info("Competitor %d has no website; no page jobs scheduled", competitor_id)
            return []

        settings = config.model_dump(exclude={"website_url", "jobs_url", "selectors"})
        targets = [
            (
                WebsiteJobConfig(url=website, selectors=config.selectors, monitoring_config=settings),
                config.priority,
                config.frequency,
            )
        ]
        if config.include_jobs:
            jobs_url = _absolute_url(config.jobs_url) or website.rstrip("/") + "/careers"
            targets.append(
                (
                    JobPostingJobConfig(url=jobs_url, monitoring_config=settings),
                    "low",
                    LESS_FREQUENT[config.frequency],
                )
            )

        now = self.clock()
        created = []
        try:
            existing = {
                (job.job_type, job.url)
                for job in self.jobs.select_by_competitor(competitor_id, user_id, job_type=None)
            }
            for job_config, priority, frequency in targets:
                if (job_config.job_type, job_config.url) in existing:
                    continue
                job = self.jobs.insert(
                    MonitoringJob(
                        competitor_id=competitor.id,
                        user_id=user_id,
                        job_type=job_config.job_type,
                        url=job_config.url,
                        priority=priority,
                        frequency_type="interval",
                        frequency_value=frequency,
                        status="pending" if config.enabled else "paused",
                        retry_count=0,
                        max_retries=self.max_retries,
                        next_run_at=calculate_next_run(frequency, now),
                        config=job_config.model_dump(),
                    )
                )
                created.append(job.id)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise DatabaseError(
                "Failed to schedule page monitoring",
                detail=f"competitor_id={competitor_id}: {exc}",
            ) from exc

        logger.info(
            "Scheduled %d page monitoring jobs for competitor %d (%s)",
            len(created), competitor_id, website,
        )
        return created

    # ---------- due jobs ----------

    async def process_pending_jobs(
        self, handler: Callable[[MonitoringJob], Awaitable[object]]
    ) -> int:
        """Hand each due social-media job to handler, one at a time.

        Returns the number of jobs handed over. Database errors while
        selecting are logged and yield 0.
        """
        return await self._process_due(handler, ("social_media",))

    async def process_pending_page_jobs(
        self, handler: Callable[[MonitoringJob], Awaitable[object]]
    ) -> int:
        """Same as process_pending_jobs for due website and careers-page jobs."""
        return await self._process_due(handler, PAGE_JOB_TYPES)

    async def _process_due(
        self,
        handler: Callable[[MonitoringJob], Awaitable[object]],
        job_types: tuple[str, ...],
    ) -> int:
        try:
            due = self.jobs.select_due_jobs(self.clock(), job_types)
        except SQLAlchemyError:
            logger.exception("Failed to select due %s jobs", "/".join(job_types))
            return 0

        processed = 0
        for job in due:
            try:
                await handler(job)
            except Exception:
                logger.exception("Unhandled error processing job %s", job.id)
            processed += 1
        return processed

    # ---------- attempt transitions ----------

    def mark_running(self, job: MonitoringJob) -> None:
        """pending -> running, committed so a crash mid-attempt is visible."""
        self.jobs.update(job.id, {"status": "running"})
        self.db.commit()

    def record_success(self, job: MonitoringJob, now: datetime) -> None:
        self.jobs.update(
            job.id,
            {
                "status": "pending",
                "last_run_at": now,
                "next_run_at": calculate_next_run(job.frequency_value, now),
                "retry_count": 0,
            },
        )
        self.db.commit()

    def record_failure(self, job: MonitoringJob, now: datetime) -> bool:
        """Advance retry state after a failed attempt.

        Returns True when the job reached max_retries and is now failed.
        """
        retry_count = job.retry_count + 1
        terminal = retry_count >= job.max_retries
        patch = {"retry_count": retry_count, "last_run_at": now}
        if terminal:
            patch["status"] = "failed"
        else:
            patch["status"] = "pending"
            patch["next_run_at"] = now + backoff_delay(retry_count)
        self.jobs.update(job.id, patch)
        self.db.commit()
        return terminal

    # ---------- user actions ----------

    def pause_monitoring(self, competitor_id: int, user_id: str) -> int:
        """Pause every pending job for the competitor. Returns jobs changed."""
        changed = 0
        for job in self.jobs.select_by_competitor(competitor_id, user_id, job_type=None):
            if job.status == "pending":
                job.status = "paused"
                changed += 1
        self.db.commit()
        logger.info("Paused %d jobs for competitor %d", changed, competitor_id)
        return changed

    def resume_monitoring(self, competitor_id: int, user_id: str) -> int:
        """Make paused and failed jobs pending and immediately due.

        Resuming is the only way out of the terminal failed state; it also
        clears the retry counter.
        """
        now = self.clock()
        changed = 0
        for job in self.jobs.select_by_competitor(competitor_id, user_id, job_type=None):
            if job.status in ("paused", "failed"):
                job.status = "pending"
                job.retry_count = 0
                job.next_run_at = now
                changed += 1
        self.db.commit()
        logger.info("Resumed %d jobs for competitor %d", changed, competitor_id)
        return changed

    def update_monitoring_config(
        self,
        competitor_id: int,
        user_id: str,
        update: MonitoringConfigUpdate,
    ) -> list[str]:
        """Merge new settings into existing jobs and add jobs for new platforms.

        Existing platforms are never duplicated. next_run_at is only
        recomputed when a frequency is supplied.

        Returns:
            Ids of jobs created for newly requested platforms.

        Raises:
            CompetitorNotFoundError: competitor does not belong to user_id.
            DatabaseError: any database failure, propagated to the caller.
        """
        competitor = self.competitors.get(competitor_id, user_id)
        patch = update.model_dump(exclude_none=True)
        now = self.clock()

        try:
            jobs = self.jobs.select_by_competitor(competitor_id, user_id)
            merged = MonitoringConfig().model_dump()
            for job in jobs:
                job_config = dict(job.config or {})
                monitoring_config = {
                    **(job_config.get("monitoring_config") or {}),
                    **patch,
                }
                job_config["monitoring_config"] = monitoring_config
                job.config = job_config
                merged.update(monitoring_config)

                if update.enabled is False:
                    job.status = "paused"
                elif update.enabled is True and job.status != "running":
                    job.status = "pending"
                if update.priority:
                    job.priority = update.priority
                if update.frequency:
                    job.frequency_value = update.frequency
                    job.next_run_at = calculate_next_run(update.frequency, now)

            created: list[str] = []
            if update.platforms:
                merged.update(patch)
                existing = {job_platform(job) for job in jobs}
                created = self._create_jobs(
                    competitor,
                    user_id,
                    [p for p in update.platforms if p not in existing],
                    MonitoringConfig(**merged),
                    existing,
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to update monitoring config for competitor %d: %s",
                competitor_id, exc,
            )
            raise DatabaseError(
                "Failed to update monitoring config",
                detail=f"competitor_id={competitor_id}: {exc}",
            ) from exc

        logger.info(
            "Updated monitoring config for competitor %d (%d new jobs)",
            competitor_id, len(created),
        )
        return created

    # ---------- retention ----------

    def cleanup_old_results(self, days_to_keep: int = 30) -> int:
        """Delete JobResult rows older than days_to_keep. Never touches jobs."""
        cutoff = self.clock() - timedelta(days=days_to_keep)
        try:
            deleted = self.jobs.delete_results_older_than(cutoff)
            self.db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to clean up job results older than %s", cutoff)
            self.db.rollback()
            return 0
        if deleted:
            logger.info("Pruned %d job results older than %d days", deleted, days_to_keep)
        return deleted

    # ---------- reporting ----------

    def get_monitoring_status(self, competitor_id: int, user_id: str) -> MonitoringStatus:
        """Jobs and the 10 most recent results for one competitor."""
        jobs = self.jobs.select_by_competitor(competitor_id, user_id, job_type=None)
        results = self.jobs.results_for_jobs([job.id for job in jobs], limit=10)
        return MonitoringStatus(
            competitor_id=competitor_id,
            jobs=[JobResponse.model_validate(job) for job in jobs],
            recent_results=[JobResultResponse.model_validate(r) for r in results],
            active_jobs=sum(1 for job in jobs if job.status in ("pending", "running")),
            paused_jobs=sum(1 for job in jobs if job.status == "paused"),
            failed_jobs=sum(1 for job in jobs if job.status == "failed"),
        )

    def get_monitoring_stats(self, user_id: str) -> MonitoringStats:
        """Aggregate job counts plus 7-day success rate and mean execution time."""
        jobs = self.jobs.select_by_user(user_id)
        since = self.clock() - timedelta(days=7)
        results = self.jobs.results_for_jobs([job.id for job in jobs], since=since)

        success_rate = 0.0
        avg_time = 0.0
        if results:
            success_rate = round(
                sum(1 for r in results if r.success) / len(results) * 100, 1
            )
            avg_time = round(sum(r.execution_time_ms for r in results) / len(results), 1)

        return MonitoringStats(
            total_jobs=len(jobs),
            active_jobs=sum(1 for job in jobs if job.status in ("pending", "running")),
            paused_jobs=sum(1 for job in jobs if job.status == "paused"),
            failed_jobs=sum(1 for job in jobs if job.status == "failed"),
            success_rate=success_rate,
            avg_execution_time_ms=avg_time,
            platforms_monitored=sorted(
                {p for p in (job_platform(job) for job in jobs) if p}
            ),
            results_last_7_days=len(results),
        )

