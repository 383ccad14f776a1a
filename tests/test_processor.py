"""Tests for the job processor: single attempts, full cycles and the timer.

Source monitors are replaced by an AsyncMock registry and gamification by
an AsyncMock facade -- tests verify result bookkeeping, intelligence
storage, re-entrancy and the analysis loop.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from apscheduler.jobstores.base import JobLookupError

from rivalwatch.alerts.models import CompetitorAlert
from rivalwatch.config import Settings
from rivalwatch.db.base import as_utc
from rivalwatch.exceptions import CompetitorNotFoundError
from rivalwatch.gamification.triggers import GamificationTriggers
from rivalwatch.monitoring.models import IntelligenceData, JobResult, MonitoringJob
from rivalwatch.monitoring.pages import JobBoardMonitor, WebsiteMonitor
from rivalwatch.monitoring.processor import PROCESSOR_JOB_ID, JobProcessor
from rivalwatch.monitoring.scheduler import MonitoringScheduler, create_scheduler
from rivalwatch.monitoring.schemas import MonitoringConfig
from rivalwatch.monitoring.sources import SourceMonitorRegistry
from rivalwatch.monitoring.store import JobStore

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _registry(posts=None, side_effect=None):
    registry = MagicMock()
    registry.fetch = AsyncMock(return_value=posts or [], side_effect=side_effect)
    registry.get_health_report.return_value = {"twitter": "HEALTHY"}
    return registry


def _due_twitter_job(db, competitor, clock) -> MonitoringJob:
    """Schedule a twitter job and move the clock past its first due time."""
    scheduler = MonitoringScheduler(db, clock=clock)
    [job_id] = scheduler.schedule_monitoring(
        competitor.id, competitor.user_id, MonitoringConfig(platforms=["twitter"])
    )
    clock.now = FIXED_NOW + timedelta(days=2)
    return JobStore(db).get(job_id)


def _recent_posts(make_post, now, ids=("t1", "t2", "t3")):
    return [
        make_post(
            post_id,
            now - timedelta(hours=6 * (i + 1)),
            likes=50 * (i + 1),
            content="New product launch #Launch",
            hashtags=["#launch"],
        )
        for i, post_id in enumerate(ids)
    ]


@pytest.fixture
def triggers():
    return AsyncMock(spec=GamificationTriggers)


def _processor(db_session, registry, settings, clock, triggers=None):
    return JobProcessor(
        lambda: db_session, registry, triggers=triggers, settings=settings, clock=clock
    )


# ---------------------------------------------------------------------------
# Single attempts
# ---------------------------------------------------------------------------


class TestProcessJob:
    @pytest.mark.asyncio
    async def test_success_stores_intelligence_and_reschedules(
        self, db_session, sample_competitor, clock, settings, triggers, make_post
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        posts = _recent_posts(make_post, clock.now)
        registry = _registry(posts)
        processor = _processor(db_session, registry, settings, clock, triggers)

        result = await processor.process_job(db_session, job)

        registry.fetch.assert_awaited_once_with("twitter", "acmeanalytics", "user-1")
        assert result.success is True
        assert result.error is None
        assert result.data == {"platform": "twitter", "posts_collected": 3}
        assert result.changes_detected is True
        assert result.retry_count == 0

        assert job.status == "pending"
        assert as_utc(job.last_run_at) == clock.now
        assert as_utc(job.next_run_at) == clock.now + timedelta(days=1)

        row = db_session.query(IntelligenceData).one()
        assert row.platform == "twitter"
        assert row.data_type == "twitter_analysis"
        assert [p["id"] for p in row.raw_content] == ["t1", "t2", "t3"]
        assert row.extracted_data["post_count"] == 3
        assert row.extracted_data["total_engagement"] == 300
        assert row.extracted_data["top_hashtags"][0]["hashtag"] == "#launch"
        assert row.importance == "low"
        triggers.on_intelligence_gathered.assert_awaited_once_with("user-1", 1)

    @pytest.mark.asyncio
    async def test_same_posts_again_detects_no_change(
        self, db_session, sample_competitor, clock, settings, make_post
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        posts = _recent_posts(make_post, clock.now)
        processor = _processor(db_session, _registry(posts), settings, clock)

        first = await processor.process_job(db_session, job)
        clock.now += timedelta(days=1)
        second = await processor.process_job(db_session, job)

        assert first.changes_detected is True
        assert second.changes_detected is False
        assert db_session.query(IntelligenceData).count() == 2

    @pytest.mark.asyncio
    async def test_empty_fetch_is_success_without_intelligence(
        self, db_session, sample_competitor, clock, settings, triggers
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        processor = _processor(db_session, _registry([]), settings, clock, triggers)

        result = await processor.process_job(db_session, job)

        assert result.success is True
        assert result.changes_detected is False
        assert db_session.query(IntelligenceData).count() == 0
        triggers.on_intelligence_gathered.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_backs_off_and_records_error(
        self, db_session, sample_competitor, clock, settings, triggers
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        registry = _registry(side_effect=RuntimeError("platform exploded"))
        processor = _processor(db_session, registry, settings, clock, triggers)

        result = await processor.process_job(db_session, job)

        assert result.success is False
        assert result.error == "platform exploded"
        assert result.retry_count == 0
        assert job.status == "pending"
        assert job.retry_count == 1
        assert as_utc(job.next_run_at) == clock.now + timedelta(minutes=2)
        triggers.on_intelligence_gathered.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unregistered_platform_fails_the_attempt(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        processor = _processor(db_session, SourceMonitorRegistry(), settings, clock)

        result = await processor.process_job(db_session, job)

        assert result.success is False
        assert "Unsupported platform: twitter" in result.error
        assert job.retry_count == 1

    @pytest.mark.asyncio
    async def test_unknown_job_type_fails_the_attempt(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        job.job_type = "news"
        job.config = {"job_type": "news", "query": "acme analytics"}
        db_session.commit()
        registry = _registry()
        processor = _processor(db_session, registry, settings, clock)

        result = await processor.process_job(db_session, job)

        assert result.success is False
        assert "news" in result.error
        assert job.retry_count == 1
        registry.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_fetch_times_out(self, db_session, sample_competitor, clock):
        settings = Settings(
            database_url="sqlite://",
            job_timeout_seconds=0.05,
            gamification_endpoint_url="",
            _env_file=None,
        )
        job = _due_twitter_job(db_session, sample_competitor, clock)

        async def slow_fetch(*args):
            await asyncio.sleep(5)
            return []

        registry = _registry()
        registry.fetch = slow_fetch
        processor = _processor(db_session, registry, settings, clock)

        result = await processor.process_job(db_session, job)

        assert result.success is False
        assert "Source fetch timed out" in result.error
        assert job.status == "pending"

    @pytest.mark.asyncio
    async def test_every_attempt_appends_one_result_and_never_leaves_running(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        processor = _processor(
            db_session, _registry(side_effect=RuntimeError("down")), settings, clock
        )

        for _ in range(3):
            await processor.process_job(db_session, job)
            assert job.status != "running"
            clock.now += timedelta(minutes=10)

        assert job.status == "failed"
        results = JobStore(db_session).results_for_jobs([job.id])
        assert len(results) == 3
        assert sorted(r.retry_count for r in results) == [0, 1, 2]
        assert all(not r.success for r in results)


# ---------------------------------------------------------------------------
# Full cycles
# ---------------------------------------------------------------------------


class TestProcessJobs:
    @pytest.mark.asyncio
    async def test_cycle_processes_analyzes_and_checks_streaks(
        self, db_session, sample_competitor, clock, settings, triggers, make_post
    ):
        _due_twitter_job(db_session, sample_competitor, clock)
        posts = _recent_posts(make_post, clock.now)
        processor = _processor(db_session, _registry(posts), settings, clock, triggers)

        summary = await processor.process_jobs()

        assert summary.skipped is False
        assert summary.jobs_processed == 1
        assert summary.competitors_analyzed == 1
        assert summary.alerts_created >= 1
        triggers.check_intelligence_streaks.assert_awaited_once_with("user-1")

        alert_types = {a.alert_type for a in db_session.query(CompetitorAlert).all()}
        assert "content_insight" in alert_types
        assert as_utc(sample_competitor.last_analyzed) == clock.now
        assert processor.last_summary == summary
        assert processor.last_cycle_at == clock.now

    @pytest.mark.asyncio
    async def test_cycle_prunes_old_results(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _due_twitter_job(db_session, sample_competitor, clock)
        JobStore(db_session).insert_result(
            JobResult(
                job_id=job.id,
                success=True,
                execution_time_ms=5,
                completed_at=clock.now - timedelta(days=45),
            )
        )
        db_session.commit()
        processor = _processor(db_session, _registry([]), settings, clock)

        summary = await processor.process_jobs()

        assert summary.results_pruned == 1
        # only the result of this cycle's attempt remains
        assert len(JobStore(db_session).results_for_jobs([job.id])) == 1

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(
        self, db_session, sample_competitor, clock, settings
    ):
        _due_twitter_job(db_session, sample_competitor, clock)
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking_fetch(*args):
            started.set()
            await release.wait()
            return []

        registry = _registry()
        registry.fetch = blocking_fetch
        processor = _processor(db_session, registry, settings, clock)

        first = asyncio.create_task(processor.process_jobs())
        await started.wait()
        assert processor.is_processing

        overlapping = await processor.process_jobs()
        assert overlapping.skipped is True
        assert overlapping.jobs_processed == 0

        release.set()
        summary = await first
        assert summary.skipped is False
        assert summary.jobs_processed == 1
        assert not processor.is_processing

    @pytest.mark.asyncio
    async def test_analysis_continues_past_failing_competitor(
        self, db_session, sample_competitor, second_competitor, clock, settings
    ):
        processor = _processor(db_session, _registry(), settings, clock)

        def engagement(db, competitor_id, **kwargs):
            if competitor_id == sample_competitor.id:
                raise ValueError("corrupt intelligence row")
            return {}

        with patch(
            "rivalwatch.monitoring.processor.analyze_engagement_patterns",
            side_effect=engagement,
        ):
            analyzed, alerts = await processor.run_analysis(db_session)

        assert analyzed == 1
        assert alerts == 0
        assert as_utc(second_competitor.last_analyzed) == clock.now
        assert sample_competitor.last_analyzed is None


# ---------------------------------------------------------------------------
# Website and careers-page jobs
# ---------------------------------------------------------------------------

HOME_V1 = """
<html><head><title>Acme Analytics</title>
<meta name="description" content="Dashboards for growing teams"></head>
<body><h1>Dashboards for growing teams</h1><p>Plans start at 29 dollars</p></body></html>
"""

HOME_V2 = """
<html><head><title>Acme Analytics | Now with AI</title>
<meta name="description" content="Dashboards for growing teams"></head>
<body><h1>AI forecasting is here</h1><p>Enterprise plans with dedicated support</p></body></html>
"""


def _careers_page(*titles):
    postings = ",".join(
        '{"@type": "JobPosting", "title": "%s", "employmentType": "FULL_TIME"}' % title
        for title in titles
    )
    return (
        "<html><head><title>Careers</title>"
        f'<script type="application/ld+json">[{postings}]</script>'
        "</head><body><h1>Join us</h1></body></html>"
    )


def _page_client_factory(pages):
    """MockTransport over a mutable {path: (status, html)} map."""

    def handler(request):
        status, html = pages.get(request.url.path, (404, ""))
        return httpx.Response(status, text=html)

    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _page_processor(db_session, settings, clock, pages, triggers=None):
    factory = _page_client_factory(pages)
    return JobProcessor(
        lambda: db_session,
        _registry(),
        triggers=triggers,
        settings=settings,
        clock=clock,
        website_monitor=WebsiteMonitor(http_client_factory=factory, clock=clock),
        job_board_monitor=JobBoardMonitor(http_client_factory=factory, clock=clock),
    )


def _page_job(db, competitor, clock, job_type, days=8) -> MonitoringJob:
    scheduler = MonitoringScheduler(db, clock=clock)
    scheduler.schedule_page_monitoring(competitor.id, competitor.user_id)
    clock.now = FIXED_NOW + timedelta(days=days)
    [job] = scheduler.jobs.select_by_competitor(
        competitor.id, competitor.user_id, job_type=job_type
    )
    return job


class TestPageJobs:
    @pytest.mark.asyncio
    async def test_website_change_is_detected_on_second_snapshot(
        self, db_session, sample_competitor, clock, settings, triggers
    ):
        job = _page_job(db_session, sample_competitor, clock, "website")
        pages = {"/": (200, HOME_V1)}
        processor = _page_processor(db_session, settings, clock, pages, triggers)

        first = await processor.process_job(db_session, job)

        assert first.success is True
        assert first.changes_detected is False
        assert first.data == {"url": "https://acme.example", "pages_collected": 1, "changes": []}

        pages["/"] = (200, HOME_V2)
        clock.now += timedelta(days=1)
        second = await processor.process_job(db_session, job)

        assert second.success is True
        assert second.changes_detected is True
        assert second.data["changes"] == ["content", "metadata"]

        rows = (
            db_session.query(IntelligenceData)
            .filter_by(source_type="website")
            .order_by(IntelligenceData.collected_at.asc())
            .all()
        )
        assert [row.importance for row in rows] == ["low", "high"]
        title_change = rows[1].extracted_data["changes"][1]
        assert title_change["field"] == "title"
        assert title_change["new_value"] == "Acme Analytics | Now with AI"
        assert triggers.on_intelligence_gathered.await_count == 2

    @pytest.mark.asyncio
    async def test_careers_page_reports_only_new_openings(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _page_job(db_session, sample_competitor, clock, "job_posting")
        assert job.url == "https://acme.example/careers"
        pages = {"/careers": (200, _careers_page("VP of Sales", "Support Specialist"))}
        processor = _page_processor(db_session, settings, clock, pages)

        first = await processor.process_job(db_session, job)
        assert first.data["listings_found"] == 2
        assert first.data["new_listings"] == 2
        assert first.changes_detected is True

        pages["/careers"] = (
            200,
            _careers_page("VP of Sales", "Support Specialist", "Chief Technology Officer (CTO)"),
        )
        clock.now += timedelta(days=7)
        second = await processor.process_job(db_session, job)
        assert second.data["new_listings"] == 1

        latest = (
            db_session.query(IntelligenceData)
            .filter_by(source_type="job_posting")
            .order_by(IntelligenceData.collected_at.desc())
            .first()
        )
        assert latest.importance == "critical"
        assert latest.extracted_data["new_listings"] == ["Chief Technology Officer (CTO)"]
        assert latest.extracted_data["by_importance"] == {"high": 1, "low": 1, "critical": 1}

    @pytest.mark.asyncio
    async def test_unchanged_careers_page_detects_nothing(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _page_job(db_session, sample_competitor, clock, "job_posting")
        pages = {"/careers": (200, _careers_page("Data Engineer"))}
        processor = _page_processor(db_session, settings, clock, pages)

        await processor.process_job(db_session, job)
        clock.now += timedelta(days=7)
        result = await processor.process_job(db_session, job)

        assert result.success is True
        assert result.changes_detected is False
        assert result.data["new_listings"] == 0

    @pytest.mark.asyncio
    async def test_page_fetch_failure_backs_off(
        self, db_session, sample_competitor, clock, settings
    ):
        job = _page_job(db_session, sample_competitor, clock, "website")
        processor = _page_processor(db_session, settings, clock, {"/": (503, "busy")})

        result = await processor.process_job(db_session, job)

        assert result.success is False
        assert "Page fetch failed" in result.error
        assert result.retry_count == 0
        assert job.retry_count == 1
        assert job.status == "pending"
        assert as_utc(job.next_run_at) == clock.now + timedelta(minutes=2)
        assert db_session.query(IntelligenceData).filter_by(source_type="website").count() == 0

    @pytest.mark.asyncio
    async def test_cycle_runs_due_page_jobs_after_social_jobs(
        self, db_session, sample_competitor, clock, settings
    ):
        MonitoringScheduler(db_session, clock=clock).schedule_page_monitoring(
            sample_competitor.id, sample_competitor.user_id
        )
        _due_twitter_job(db_session, sample_competitor, clock)
        processor = _page_processor(db_session, settings, clock, {"/": (200, HOME_V1)})

        summary = await processor.process_jobs()

        # the weekly careers job is not due yet
        assert summary.jobs_processed == 1
        assert summary.page_jobs_processed == 1


# ---------------------------------------------------------------------------
# Manual analysis
# ---------------------------------------------------------------------------


class TestAnalyzeCompetitor:
    @pytest.mark.asyncio
    async def test_returns_all_insight_categories(
        self, db_session, sample_competitor, clock, settings
    ):
        processor = _processor(db_session, _registry(), settings, clock)

        report = await processor.analyze_competitor(sample_competitor.id, "user-1")

        assert report["competitor_id"] == sample_competitor.id
        assert report["alerts_created"] == 0
        assert set(report["insights"]) == {
            "engagement_trends",
            "content_opportunities",
            "timing_insights",
            "audience_changes",
            "competitive_advantages",
            "risk_factors",
        }

    @pytest.mark.asyncio
    async def test_wrong_owner_raises(self, db_session, sample_competitor, clock, settings):
        processor = _processor(db_session, _registry(), settings, clock)
        with pytest.raises(CompetitorNotFoundError):
            await processor.analyze_competitor(sample_competitor.id, "intruder")


# ---------------------------------------------------------------------------
# Timer control
# ---------------------------------------------------------------------------


class TestTimer:
    def test_start_registers_single_instance_interval_job(self, db_session, settings, clock):
        processor = _processor(db_session, _registry(), settings, clock)
        scheduler = create_scheduler()

        processor.start(scheduler, interval_minutes=5)

        job = scheduler.get_job(PROCESSOR_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.trigger.interval == timedelta(minutes=5)

        status = processor.get_status()
        assert status["is_running"] is True
        assert status["interval_minutes"] == 5
        assert status["source_health"] == {"twitter": "HEALTHY"}

        processor.stop()
        assert scheduler.get_job(PROCESSOR_JOB_ID) is None
        assert processor.get_status()["is_running"] is False

    def test_stop_tolerates_missing_job(self, db_session, settings, clock):
        processor = _processor(db_session, _registry(), settings, clock)
        scheduler = MagicMock()
        scheduler.remove_job.side_effect = JobLookupError(PROCESSOR_JOB_ID)

        processor.start(scheduler)
        assert scheduler.add_job.call_args.kwargs["minutes"] == settings.processor_interval_minutes

        processor.stop()
        processor.stop()
        scheduler.remove_job.assert_called_once_with(PROCESSOR_JOB_ID)
