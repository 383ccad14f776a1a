"""The periodic processing cycle: due jobs, analysis, alerts, retention.

One cycle:
1. Process every due social-media job, then every due website and
   careers-page job, one at a time
2. Analyze every active competitor (engagement 7d, frequency 30d, audience 30d)
   and turn the resulting insights into alerts
3. Recompute collection streaks for users who gathered intelligence
4. Prune job results older than the retention window

Cycles are strictly serialized per processor instance: a tick that fires
while a cycle is still running is skipped, not queued. stop() removes the
timer job but lets an in-flight cycle run to completion.

Registered as a periodic APScheduler interval job by start().
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from apscheduler.jobstores.base import JobLookupError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rivalwatch.alerts.generator import generate_alerts
from rivalwatch.alerts.models import CompetitorAlert
from rivalwatch.analysis.engine import (
    analyze_audience,
    analyze_engagement_patterns,
    analyze_posting_frequency,
    classify_importance,
    detect_themes,
    hashtag_patterns,
)
from rivalwatch.analysis.insights import Insight, generate_insights
from rivalwatch.analysis.sentiment import analyze_posts_sentiment
from rivalwatch.config import Settings, get_settings
from rivalwatch.db.base import utcnow
from rivalwatch.exceptions import SourceFetchError
from rivalwatch.gamification.triggers import GamificationTriggers
from rivalwatch.monitoring.models import Competitor, IntelligenceData, JobResult, MonitoringJob
from rivalwatch.monitoring.pages import (
    JobBoardMonitor,
    WebsiteMonitor,
    detect_changes,
    highest_importance,
)
from rivalwatch.monitoring.schemas import (
    CycleSummary,
    JobConfig,
    JobPostingJobConfig,
    PageSnapshot,
    Post,
    SocialMediaJobConfig,
    WebsiteJobConfig,
    parse_job_config,
)
from rivalwatch.monitoring.scheduler import MonitoringScheduler
from rivalwatch.monitoring.sources import SourceMonitorRegistry
from rivalwatch.monitoring.store import CompetitorDirectory, JobStore

logger = structlog.get_logger(__name__)

PROCESSOR_JOB_ID = "rivalwatch_process_jobs"

ENGAGEMENT_WINDOW_DAYS = 7
FREQUENCY_WINDOW_DAYS = 30
AUDIENCE_WINDOW_DAYS = 30

# Body-text change confidence at which a website change is high importance
MAJOR_PAGE_CHANGE = 0.3


def _collected(data: Optional[dict]) -> int:
    data = data or {}
    return data.get("posts_collected", 0) + data.get("pages_collected", 0)


def _previous_snapshot(row: Optional[IntelligenceData]) -> Optional[PageSnapshot]:
    if row is None or not row.raw_content:
        return None
    try:
        return PageSnapshot.model_validate(row.raw_content[0])
    except PydanticValidationError:
        logger.warning("unreadable_page_snapshot", intelligence_id=row.id)
        return None


class JobProcessor:
    """Runs processing cycles over the monitoring job store.

    Args:
        session_factory: Returns the session for a cycle. Caller manages
            session lifecycle.
        registry: Platform -> source monitor dispatch.
        triggers: Gamification facade; None disables gamification events.
        settings: Intervals, retention and timeouts. Defaults to get_settings().
        clock: Returns the current aware UTC time. Injected by tests.
        website_monitor: Fetches website pages. Built from settings if None.
        job_board_monitor: Fetches careers pages. Built from settings if None.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: SourceMonitorRegistry,
        triggers: Optional[GamificationTriggers] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        website_monitor: Optional[WebsiteMonitor] = None,
        job_board_monitor: Optional[JobBoardMonitor] = None,
    ) -> None:
        self._session_factory = session_factory
        self.registry = registry
        self.triggers = triggers
        self.settings = settings or get_settings()
        self.clock = clock
        page_options = {
            "timeout": self.settings.http_timeout_seconds,
            "user_agent": self.settings.page_user_agent,
            "clock": clock,
        }
        self.website_monitor = website_monitor or WebsiteMonitor(**page_options)
        self.job_board_monitor = job_board_monitor or JobBoardMonitor(**page_options)

        self._is_processing = False
        self._scheduler: Any = None
        self._interval_minutes: Optional[int] = None
        self.last_cycle_at: Optional[datetime] = None
        self.last_summary: Optional[CycleSummary] = None

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    # ---------- timer ----------

    def start(self, scheduler: Any, interval_minutes: Optional[int] = None) -> None:
        """Register the cycle as an interval job that also fires immediately."""
        interval = interval_minutes or self.settings.processor_interval_minutes
        scheduler.add_job(
            self.process_jobs,
            trigger="interval",
            minutes=interval,
            id=PROCESSOR_JOB_ID,
            replace_existing=True,
            next_run_time=utcnow(),
            max_instances=1,
            coalesce=True,
        )
        self._scheduler = scheduler
        self._interval_minutes = interval
        logger.info("processor_started", interval_minutes=interval)

    def stop(self) -> None:
        """Stop future ticks. An in-flight cycle is allowed to finish."""
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(PROCESSOR_JOB_ID)
        except JobLookupError:
            logger.debug("processor_job_already_removed")
        self._scheduler = None
        logger.info("processor_stopped", cycle_in_flight=self._is_processing)

    def get_status(self) -> dict:
        return {
            "is_running": self._scheduler is not None,
            "is_processing": self._is_processing,
            "interval_minutes": self._interval_minutes,
            "last_cycle_at": self.last_cycle_at,
            "last_summary": self.last_summary.model_dump() if self.last_summary else None,
            "source_health": self.registry.get_health_report(),
        }

    # ---------- cycle ----------

    async def process_jobs(self) -> CycleSummary:
        """Run one full cycle unless one is already in progress."""
        if self._is_processing:
            logger.info("processing_cycle_skipped", reason="previous cycle still running")
            return CycleSummary(skipped=True)

        self._is_processing = True
        started = time.perf_counter()
        summary = CycleSummary()
        gathered_users: set[str] = set()
        try:
            db = self._session_factory()
            scheduler = MonitoringScheduler(
                db, clock=self.clock, max_retries=self.settings.default_max_retries
            )

            async def handle(job: MonitoringJob) -> None:
                result = await self.process_job(db, job)
                if result.success and _collected(result.data):
                    gathered_users.add(job.user_id)

            summary.jobs_processed = await scheduler.process_pending_jobs(handle)
            summary.page_jobs_processed = await scheduler.process_pending_page_jobs(handle)
            summary.competitors_analyzed, summary.alerts_created = await self.run_analysis(db)

            if self.triggers is not None:
                for user_id in sorted(gathered_users):
                    await self.triggers.check_intelligence_streaks(user_id)

            summary.results_pruned = scheduler.cleanup_old_results(
                self.settings.result_retention_days
            )
        except Exception:
            logger.exception("processing_cycle_failed")
        finally:
            self._is_processing = False
            self.last_cycle_at = self.clock()
            self.last_summary = summary

        logger.info(
            "processing_cycle_complete",
            duration_ms=int((time.perf_counter() - started) * 1000),
            **summary.model_dump(exclude={"skipped"}),
        )
        return summary

    async def process_job(self, db: Session, job: MonitoringJob) -> JobResult:
        """Run one attempt of one job and append exactly one JobResult.

        The job is never left running: success reschedules it, failure
        either backs off or marks it failed.
        """
        scheduler = MonitoringScheduler(db, clock=self.clock)
        started = time.perf_counter()
        attempt_retry_count = job.retry_count
        success = False
        error: Optional[str] = None
        data: Optional[dict] = None
        changes_detected = False

        scheduler.mark_running(job)
        try:
            try:
                config = parse_job_config(job.config)
                data, changes_detected = await asyncio.wait_for(
                    self._collect(db, job, config),
                    timeout=self.settings.job_timeout_seconds,
                )
                scheduler.record_success(job, self.clock())
                success = True
            except asyncio.TimeoutError as exc:
                raise SourceFetchError(
                    "Source fetch timed out",
                    detail=f"job {job.id} exceeded {self.settings.job_timeout_seconds}s",
                ) from exc
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError):
                db.rollback()
            error = str(exc) or type(exc).__name__
            terminal = scheduler.record_failure(job, self.clock())
            logger.warning(
                "job_attempt_failed",
                job_id=job.id,
                job_type=job.job_type,
                retry_count=job.retry_count,
                max_retries=job.max_retries,
                terminal=terminal,
                error=error,
            )
        finally:
            result = JobResult(
                job_id=job.id,
                success=success,
                data=data,
                error=error,
                execution_time_ms=int((time.perf_counter() - started) * 1000),
                changes_detected=changes_detected,
                retry_count=attempt_retry_count,
                completed_at=self.clock(),
            )
            JobStore(db).insert_result(result)
            db.commit()

        if success:
            logger.info(
                "job_attempt_succeeded",
                job_id=job.id,
                job_type=job.job_type,
                changes_detected=changes_detected,
                **data,
            )
            if _collected(data) and self.triggers is not None:
                await self.triggers.on_intelligence_gathered(job.user_id, 1)
        return result

    async def _collect(
        self, db: Session, job: MonitoringJob, config: JobConfig
    ) -> tuple[dict, bool]:
        """Fetch and store one job's intelligence. Returns (result data, changes detected)."""
        if isinstance(config, WebsiteJobConfig):
            return await self._collect_website(db, job, config)
        if isinstance(config, JobPostingJobConfig):
            return await self._collect_job_board(db, job, config)

        posts = await self.registry.fetch(config.platform, config.handle, job.user_id)
        changes_detected = self._store_intelligence(db, job, config, posts)
        return {"platform": config.platform, "posts_collected": len(posts)}, changes_detected

    def _store_intelligence(
        self,
        db: Session,
        job: MonitoringJob,
        config: SocialMediaJobConfig,
        posts: list[Post],
    ) -> bool:
        """Persist one IntelligenceData row. Returns True if any post is new."""
        if not posts:
            return False

        previous = CompetitorDirectory(db).latest_intelligence(job.competitor_id, config.platform)
        seen = {raw.get("id") for raw in (previous.raw_content or [])} if previous else set()
        changes_detected = any(post.id not in seen for post in posts)

        total = sum(post.engagement.total for post in posts)
        db.add(
            IntelligenceData(
                competitor_id=job.competitor_id,
                user_id=job.user_id,
                source_type="social_media",
                platform=config.platform,
                data_type=f"{config.platform}_analysis",
                source_url=job.url,
                raw_content=[post.model_dump(mode="json") for post in posts],
                extracted_data={
                    "post_count": len(posts),
                    "total_engagement": total,
                    "avg_engagement": round(total / len(posts), 2),
                    "themes": detect_themes(posts),
                    "top_hashtags": hashtag_patterns(posts)[:10],
                    "sentiment": analyze_posts_sentiment(posts)["overall"],
                },
                importance=classify_importance(posts),
                tags=[config.platform, "social_media", "competitor_monitoring"],
                collected_at=self.clock(),
            )
        )
        db.flush()
        return changes_detected

    async def _collect_website(
        self, db: Session, job: MonitoringJob, config: WebsiteJobConfig
    ) -> tuple[dict, bool]:
        snapshot = await self.website_monitor.fetch(config.url, config.selectors)
        previous = _previous_snapshot(
            CompetitorDirectory(db).latest_intelligence(job.competitor_id, "website", config.url)
        )
        changes = detect_changes(previous, snapshot, self.clock())

        importance = "low"
        if any(c.change_type == "content" and c.confidence >= MAJOR_PAGE_CHANGE for c in changes):
            importance = "high"
        elif changes:
            importance = "medium"

        db.add(
            IntelligenceData(
                competitor_id=job.competitor_id,
                user_id=job.user_id,
                source_type="website",
                platform="website",
                data_type="website_snapshot",
                source_url=config.url,
                raw_content=[snapshot.model_dump(mode="json")],
                extracted_data={
                    "title": snapshot.title,
                    "description": snapshot.description,
                    "word_count": len(snapshot.text.split()),
                    "selected": snapshot.selected,
                    "changes": [change.model_dump(mode="json") for change in changes],
                },
                importance=importance,
                tags=["website", "competitor_monitoring"],
                collected_at=self.clock(),
            )
        )
        db.flush()
        data = {
            "url": config.url,
            "pages_collected": 1,
            "changes": [change.change_type for change in changes],
        }
        return data, bool(changes)

    async def _collect_job_board(
        self, db: Session, job: MonitoringJob, config: JobPostingJobConfig
    ) -> tuple[dict, bool]:
        """Store the current openings; changes are titles not seen last time."""
        _, listings = await self.job_board_monitor.fetch(config.url)
        previous = CompetitorDirectory(db).latest_intelligence(
            job.competitor_id, "job_board", config.url
        )
        known = set()
        if previous is not None:
            known = {str(item.get("title", "")).lower() for item in previous.raw_content or []}
        new_listings = [listing for listing in listings if listing.title.lower() not in known]

        by_importance: dict[str, int] = {}
        for listing in listings:
            level = listing.strategic_importance
            by_importance[level] = by_importance.get(level, 0) + 1

        db.add(
            IntelligenceData(
                competitor_id=job.competitor_id,
                user_id=job.user_id,
                source_type="job_posting",
                platform="job_board",
                data_type="job_postings",
                source_url=config.url,
                raw_content=[listing.model_dump(mode="json") for listing in listings],
                extracted_data={
                    "listing_count": len(listings),
                    "new_listings": [listing.title for listing in new_listings],
                    "remote_count": sum(1 for listing in listings if listing.remote),
                    "by_importance": by_importance,
                },
                importance=highest_importance(new_listings),
                tags=["job_posting", "hiring", "competitor_monitoring"],
                collected_at=self.clock(),
            )
        )
        db.flush()
        data = {
            "url": config.url,
            "pages_collected": 1,
            "listings_found": len(listings),
            "new_listings": len(new_listings),
        }
        return data, bool(new_listings)

    # ---------- analysis ----------

    async def run_analysis(self, db: Session) -> tuple[int, int]:
        """Analyze every active competitor. One failure never stops the others.

        Returns:
            (competitors analyzed, alerts created)
        """
        try:
            competitors = CompetitorDirectory(db).list_active()
        except SQLAlchemyError:
            logger.exception("active_competitor_lookup_failed")
            return 0, 0

        analyzed = 0
        alerts_created = 0
        for competitor in competitors:
            try:
                _, alerts = await self._analyze(db, competitor)
            except Exception as exc:
                if isinstance(exc, SQLAlchemyError):
                    db.rollback()
                logger.exception(
                    "competitor_analysis_failed",
                    competitor_id=competitor.id,
                    competitor=competitor.name,
                )
                continue
            analyzed += 1
            alerts_created += len(alerts)
        return analyzed, alerts_created

    async def _analyze(
        self, db: Session, competitor: Competitor
    ) -> tuple[dict[str, list[Insight]], list[CompetitorAlert]]:
        now = self.clock()
        engagement = analyze_engagement_patterns(
            db, competitor.id, days=ENGAGEMENT_WINDOW_DAYS, now=now
        )
        frequency = analyze_posting_frequency(
            db, competitor.id, days=FREQUENCY_WINDOW_DAYS, now=now
        )
        audience = analyze_audience(db, competitor.id, days=AUDIENCE_WINDOW_DAYS, now=now)

        insights = generate_insights(engagement, frequency, audience)
        alerts = generate_alerts(db, competitor, insights)
        CompetitorDirectory(db).mark_analyzed(competitor, now)
        db.commit()
        return insights, alerts

    async def analyze_competitor(self, competitor_id: int, user_id: Optional[str] = None) -> dict:
        """Run the analysis pass for one competitor on demand.

        Raises:
            CompetitorNotFoundError: No such competitor (for this user).
        """
        db = self._session_factory()
        competitor = CompetitorDirectory(db).get(competitor_id, user_id)
        insights, alerts = await self._analyze(db, competitor)
        logger.info(
            "manual_analysis_complete",
            competitor_id=competitor_id,
            alerts_created=len(alerts),
        )
        return {
            "competitor_id": competitor_id,
            "alerts_created": len(alerts),
            "insights": {
                category: [insight.model_dump() for insight in items]
                for category, items in insights.items()
            },
        }
