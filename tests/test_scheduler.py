"""Tests for the monitoring job lifecycle.

Covers job creation, next-run arithmetic, retry/backoff transitions,
pause/resume, config updates, result retention and reporting. All
timestamps come from a fixed injected clock so backoff deltas are exact.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from rivalwatch.db.base import as_utc
from rivalwatch.exceptions import CompetitorNotFoundError, DatabaseError
from rivalwatch.monitoring.models import JobResult, MonitoringJob
from rivalwatch.monitoring.scheduler import (
    PAGE_JOB_TYPES,
    MonitoringScheduler,
    backoff_delay,
    calculate_next_run,
    job_platform,
)
from rivalwatch.monitoring.schemas import (
    MonitoringConfig,
    MonitoringConfigUpdate,
    PageMonitoringConfig,
)
from rivalwatch.monitoring.store import JobStore

# Matches the starting time of the conftest clock fixture
FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler(db_session, clock):
    return MonitoringScheduler(db_session, clock=clock)


def _jobs_by_platform(scheduler, competitor):
    return {
        job_platform(job): job
        for job in scheduler.jobs.select_by_competitor(competitor.id, competitor.user_id)
    }


# ---------------------------------------------------------------------------
# Next-run arithmetic
# ---------------------------------------------------------------------------


class TestCalculateNextRun:
    @pytest.mark.parametrize(
        "frequency,delta",
        [
            ("hourly", timedelta(hours=1)),
            ("daily", timedelta(days=1)),
            ("weekly", timedelta(weeks=1)),
        ],
    )
    def test_known_frequencies(self, frequency, delta):
        assert calculate_next_run(frequency, FIXED_NOW) == FIXED_NOW + delta

    def test_unknown_frequency_falls_back_to_daily(self):
        assert calculate_next_run("fortnightly", FIXED_NOW) == FIXED_NOW + timedelta(days=1)
        assert calculate_next_run(None, FIXED_NOW) == FIXED_NOW + timedelta(days=1)

    def test_backoff_doubles(self):
        assert backoff_delay(1) == timedelta(minutes=2)
        assert backoff_delay(2) == timedelta(minutes=4)
        assert backoff_delay(3) == timedelta(minutes=8)


# ---------------------------------------------------------------------------
# Job creation
# ---------------------------------------------------------------------------


class TestScheduleMonitoring:
    def test_creates_one_job_per_platform_with_handle(self, scheduler, sample_competitor):
        created = scheduler.schedule_monitoring(sample_competitor.id, "user-1")

        # instagram is a default platform but has no handle
        assert len(created) == 3
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        assert set(jobs) == {"linkedin", "twitter", "facebook"}

        twitter = jobs["twitter"]
        assert twitter.job_type == "social_media"
        assert twitter.status == "pending"
        assert twitter.retry_count == 0
        assert twitter.max_retries == 3
        assert twitter.url == "https://twitter.com/acmeanalytics"
        assert twitter.config["handle"] == "acmeanalytics"
        assert as_utc(twitter.next_run_at) == FIXED_NOW + timedelta(days=1)

    def test_repeat_call_does_not_duplicate(self, scheduler, sample_competitor):
        first = scheduler.schedule_monitoring(sample_competitor.id, "user-1")
        second = scheduler.schedule_monitoring(sample_competitor.id, "user-1")

        assert len(first) == 3
        assert second == []
        assert len(scheduler.jobs.select_by_competitor(sample_competitor.id, "user-1")) == 3

    def test_disabled_config_creates_paused_jobs(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(
            sample_competitor.id,
            "user-1",
            MonitoringConfig(platforms=["twitter"], frequency="hourly", enabled=False),
        )
        job = _jobs_by_platform(scheduler, sample_competitor)["twitter"]
        assert job.status == "paused"
        assert job.frequency_value == "hourly"
        assert as_utc(job.next_run_at) == FIXED_NOW + timedelta(hours=1)

    def test_wrong_user_raises_not_found(self, scheduler, sample_competitor):
        with pytest.raises(CompetitorNotFoundError):
            scheduler.schedule_monitoring(sample_competitor.id, "someone-else")


# ---------------------------------------------------------------------------
# Page monitoring jobs
# ---------------------------------------------------------------------------


def _page_jobs(scheduler, competitor):
    return {
        job.job_type: job
        for job in scheduler.jobs.select_by_competitor(
            competitor.id, competitor.user_id, job_type=None
        )
        if job.job_type in PAGE_JOB_TYPES
    }


class TestSchedulePageMonitoring:
    def test_defaults_to_website_and_careers_page(self, scheduler, sample_competitor):
        created = scheduler.schedule_page_monitoring(sample_competitor.id, "user-1")

        assert len(created) == 2
        jobs = _page_jobs(scheduler, sample_competitor)
        website, careers = jobs["website"], jobs["job_posting"]
        assert website.url == "https://acme.example"
        assert website.priority == "medium"
        assert website.frequency_value == "daily"
        assert as_utc(website.next_run_at) == FIXED_NOW + timedelta(days=1)
        assert website.config == {
            "job_type": "website",
            "url": "https://acme.example",
            "selectors": {},
            "monitoring_config": {
                "include_jobs": True,
                "frequency": "daily",
                "priority": "medium",
                "enabled": True,
            },
        }
        assert careers.url == "https://acme.example/careers"
        assert careers.priority == "low"
        assert careers.frequency_value == "weekly"
        assert as_utc(careers.next_run_at) == FIXED_NOW + timedelta(weeks=1)

    def test_explicit_urls_and_selectors(self, scheduler, second_competitor):
        config = PageMonitoringConfig(
            website_url="beta.example/pricing",
            jobs_url="https://jobs.beta.example",
            selectors={"price": ".plan-price"},
            frequency="hourly",
            enabled=False,
        )

        scheduler.schedule_page_monitoring(second_competitor.id, "user-1", config)

        jobs = _page_jobs(scheduler, second_competitor)
        assert jobs["website"].url == "https://beta.example/pricing"
        assert jobs["website"].config["selectors"] == {"price": ".plan-price"}
        assert jobs["job_posting"].url == "https://jobs.beta.example"
        assert jobs["job_posting"].frequency_value == "daily"
        assert {job.status for job in jobs.values()} == {"paused"}

    def test_competitor_without_website_gets_no_jobs(self, scheduler, second_competitor):
        assert scheduler.schedule_page_monitoring(second_competitor.id, "user-1") == []
        assert _page_jobs(scheduler, second_competitor) == {}

    def test_repeat_call_does_not_duplicate(self, scheduler, sample_competitor):
        scheduler.schedule_page_monitoring(sample_competitor.id, "user-1")
        assert scheduler.schedule_page_monitoring(sample_competitor.id, "user-1") == []

        created = scheduler.schedule_page_monitoring(
            sample_competitor.id,
            "user-1",
            PageMonitoringConfig(website_url="https://acme.example/pricing"),
        )
        # the default careers URL is derived from the new website URL
        assert len(created) == 2

    def test_page_jobs_do_not_affect_social_selection(self, scheduler, sample_competitor):
        scheduler.schedule_page_monitoring(sample_competitor.id, "user-1")
        assert scheduler.jobs.select_by_competitor(sample_competitor.id, "user-1") == []

    def test_wrong_user_raises_not_found(self, scheduler, sample_competitor):
        with pytest.raises(CompetitorNotFoundError):
            scheduler.schedule_page_monitoring(sample_competitor.id, "someone-else")


# ---------------------------------------------------------------------------
# Retry / backoff transitions
# ---------------------------------------------------------------------------


class TestRetryTransitions:
    def _twitter_job(self, scheduler, competitor):
        scheduler.schedule_monitoring(
            competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        return _jobs_by_platform(scheduler, competitor)["twitter"]

    def test_backoff_then_failed(self, scheduler, sample_competitor):
        job = self._twitter_job(scheduler, sample_competitor)

        assert scheduler.record_failure(job, FIXED_NOW) is False
        assert job.status == "pending"
        assert job.retry_count == 1
        assert as_utc(job.next_run_at) == FIXED_NOW + timedelta(minutes=2)

        second = FIXED_NOW + timedelta(minutes=2)
        assert scheduler.record_failure(job, second) is False
        assert job.retry_count == 2
        assert as_utc(job.next_run_at) == second + timedelta(minutes=4)

        third = second + timedelta(minutes=4)
        assert scheduler.record_failure(job, third) is True
        assert job.status == "failed"
        assert job.retry_count == 3
        # next_run_at is left where the last backoff put it
        assert as_utc(job.next_run_at) == second + timedelta(minutes=4)
        assert as_utc(job.last_run_at) == third

    def test_success_resets_retry_count(self, scheduler, sample_competitor):
        job = self._twitter_job(scheduler, sample_competitor)
        scheduler.record_failure(job, FIXED_NOW)
        assert job.retry_count == 1

        later = FIXED_NOW + timedelta(minutes=5)
        scheduler.mark_running(job)
        assert job.status == "running"
        scheduler.record_success(job, later)

        assert job.status == "pending"
        assert job.retry_count == 0
        assert as_utc(job.last_run_at) == later
        assert as_utc(job.next_run_at) == later + timedelta(days=1)

    def test_failed_job_is_not_due(self, scheduler, sample_competitor, clock):
        job = self._twitter_job(scheduler, sample_competitor)
        job.max_retries = 1
        scheduler.record_failure(job, FIXED_NOW)
        assert job.status == "failed"

        clock.now = FIXED_NOW + timedelta(days=30)
        assert scheduler.jobs.select_due_jobs(clock.now) == []

    def test_transitions_write_through_job_store(self, scheduler, sample_competitor):
        job = self._twitter_job(scheduler, sample_competitor)

        with patch.object(scheduler.jobs, "update", wraps=scheduler.jobs.update) as update:
            scheduler.mark_running(job)
            scheduler.record_failure(job, FIXED_NOW)
            scheduler.record_success(job, FIXED_NOW + timedelta(minutes=2))

        assert [call.args[0] for call in update.call_args_list] == [job.id] * 3
        assert [call.args[1]["status"] for call in update.call_args_list] == [
            "running",
            "pending",
            "pending",
        ]


# ---------------------------------------------------------------------------
# Due-job processing
# ---------------------------------------------------------------------------


class TestProcessPendingJobs:
    @pytest.mark.asyncio
    async def test_hands_only_due_jobs_to_handler(self, scheduler, sample_competitor, clock):
        scheduler.schedule_monitoring(sample_competitor.id, "user-1")
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        jobs["facebook"].status = "paused"
        jobs["linkedin"].next_run_at = FIXED_NOW + timedelta(days=5)
        scheduler.db.commit()

        clock.now = FIXED_NOW + timedelta(days=2)
        seen = []

        async def handler(job):
            seen.append(job_platform(job))

        assert await scheduler.process_pending_jobs(handler) == 1
        assert seen == ["twitter"]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_others(self, scheduler, sample_competitor, clock):
        scheduler.schedule_monitoring(sample_competitor.id, "user-1")
        clock.now = FIXED_NOW + timedelta(days=2)
        seen = []

        async def handler(job):
            seen.append(job.id)
            if len(seen) == 1:
                raise RuntimeError("boom")

        assert await scheduler.process_pending_jobs(handler) == 3
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_page_jobs_are_handed_over_separately(
        self, scheduler, sample_competitor, clock
    ):
        scheduler.schedule_monitoring(
            sample_competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        scheduler.schedule_page_monitoring(sample_competitor.id, "user-1")
        clock.now = FIXED_NOW + timedelta(days=8)
        social, pages = [], []

        async def collect_social(job):
            social.append(job.job_type)

        async def collect_pages(job):
            pages.append(job.job_type)

        assert await scheduler.process_pending_jobs(collect_social) == 1
        assert await scheduler.process_pending_page_jobs(collect_pages) == 2
        assert social == ["social_media"]
        assert sorted(pages) == ["job_posting", "website"]


# ---------------------------------------------------------------------------
# Pause / resume
# ---------------------------------------------------------------------------


class TestPauseResume:
    def test_pause_only_touches_pending_jobs(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(sample_competitor.id, "user-1")
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        jobs["linkedin"].status = "failed"
        scheduler.db.commit()

        assert scheduler.pause_monitoring(sample_competitor.id, "user-1") == 2
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        assert jobs["twitter"].status == "paused"
        assert jobs["facebook"].status == "paused"
        assert jobs["linkedin"].status == "failed"

    def test_resume_makes_paused_and_failed_jobs_due_now(
        self, scheduler, sample_competitor, clock
    ):
        scheduler.schedule_monitoring(sample_competitor.id, "user-1")
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        jobs["linkedin"].status = "failed"
        jobs["linkedin"].retry_count = 3
        scheduler.db.commit()
        scheduler.pause_monitoring(sample_competitor.id, "user-1")

        clock.now = FIXED_NOW + timedelta(hours=3)
        assert scheduler.resume_monitoring(sample_competitor.id, "user-1") == 3

        for job in _jobs_by_platform(scheduler, sample_competitor).values():
            assert job.status == "pending"
            assert job.retry_count == 0
            assert as_utc(job.next_run_at) == clock.now
        assert len(scheduler.jobs.select_due_jobs(clock.now)) == 3

    def test_pause_and_resume_cover_page_jobs(self, scheduler, sample_competitor):
        scheduler.schedule_page_monitoring(sample_competitor.id, "user-1")

        assert scheduler.pause_monitoring(sample_competitor.id, "user-1") == 2
        jobs = _page_jobs(scheduler, sample_competitor)
        assert {job.status for job in jobs.values()} == {"paused"}

        assert scheduler.resume_monitoring(sample_competitor.id, "user-1") == 2
        assert {job.status for job in jobs.values()} == {"pending"}


# ---------------------------------------------------------------------------
# Config updates
# ---------------------------------------------------------------------------


class TestUpdateMonitoringConfig:
    def test_merges_settings_and_adds_new_platforms(self, scheduler, sample_competitor, clock):
        scheduler.schedule_monitoring(
            sample_competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        clock.now = FIXED_NOW + timedelta(hours=1)

        created = scheduler.update_monitoring_config(
            sample_competitor.id,
            "user-1",
            MonitoringConfigUpdate(
                platforms=["twitter", "linkedin"], frequency="hourly", priority="high"
            ),
        )

        assert len(created) == 1
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        assert set(jobs) == {"twitter", "linkedin"}

        twitter = jobs["twitter"]
        assert twitter.priority == "high"
        assert twitter.frequency_value == "hourly"
        assert as_utc(twitter.next_run_at) == clock.now + timedelta(hours=1)
        assert twitter.config["monitoring_config"]["frequency"] == "hourly"

        linkedin = jobs["linkedin"]
        assert linkedin.priority == "high"
        assert linkedin.frequency_value == "hourly"

    def test_without_frequency_next_run_is_unchanged(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(
            sample_competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        before = as_utc(_jobs_by_platform(scheduler, sample_competitor)["twitter"].next_run_at)

        scheduler.update_monitoring_config(
            sample_competitor.id, "user-1", MonitoringConfigUpdate(keywords=["pricing"])
        )

        job = _jobs_by_platform(scheduler, sample_competitor)["twitter"]
        assert as_utc(job.next_run_at) == before
        assert job.config["monitoring_config"]["keywords"] == ["pricing"]

    def test_enabled_toggles_status(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(
            sample_competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        scheduler.update_monitoring_config(
            sample_competitor.id, "user-1", MonitoringConfigUpdate(enabled=False)
        )
        assert _jobs_by_platform(scheduler, sample_competitor)["twitter"].status == "paused"

        scheduler.update_monitoring_config(
            sample_competitor.id, "user-1", MonitoringConfigUpdate(enabled=True)
        )
        assert _jobs_by_platform(scheduler, sample_competitor)["twitter"].status == "pending"

    def test_database_failure_propagates(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(
            sample_competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        failure = OperationalError("UPDATE scraping_jobs", {}, Exception("database is locked"))

        with patch.object(scheduler.db, "commit", side_effect=failure):
            with pytest.raises(DatabaseError):
                scheduler.update_monitoring_config(
                    sample_competitor.id, "user-1", MonitoringConfigUpdate(priority="low")
                )


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestCleanupOldResults:
    def test_prunes_only_old_results(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(
            sample_competitor.id, "user-1", MonitoringConfig(platforms=["twitter"])
        )
        job = _jobs_by_platform(scheduler, sample_competitor)["twitter"]
        store = JobStore(scheduler.db)
        for age_days in (45, 31, 29, 1):
            store.insert_result(
                JobResult(
                    job_id=job.id,
                    success=True,
                    execution_time_ms=10,
                    completed_at=FIXED_NOW - timedelta(days=age_days),
                )
            )
        scheduler.db.commit()

        assert scheduler.cleanup_old_results(days_to_keep=30) == 2
        remaining = store.results_for_jobs([job.id])
        assert len(remaining) == 2
        # the job itself is never deleted
        assert scheduler.db.get(MonitoringJob, job.id) is not None

    def test_nothing_to_prune(self, scheduler):
        assert scheduler.cleanup_old_results() == 0


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class TestReporting:
    def test_status_and_stats(self, scheduler, sample_competitor):
        scheduler.schedule_monitoring(sample_competitor.id, "user-1")
        jobs = _jobs_by_platform(scheduler, sample_competitor)
        jobs["facebook"].status = "paused"
        jobs["linkedin"].status = "failed"
        store = JobStore(scheduler.db)
        for success, ms in ((True, 100), (True, 300), (False, 200)):
            store.insert_result(
                JobResult(
                    job_id=jobs["twitter"].id,
                    success=success,
                    execution_time_ms=ms,
                    completed_at=FIXED_NOW - timedelta(days=1),
                )
            )
        # outside the 7-day stats window
        store.insert_result(
            JobResult(
                job_id=jobs["twitter"].id,
                success=False,
                execution_time_ms=900,
                completed_at=FIXED_NOW - timedelta(days=10),
            )
        )
        scheduler.db.commit()

        status = scheduler.get_monitoring_status(sample_competitor.id, "user-1")
        assert len(status.jobs) == 3
        assert len(status.recent_results) == 4
        assert status.active_jobs == 1
        assert status.paused_jobs == 1
        assert status.failed_jobs == 1

        stats = scheduler.get_monitoring_stats("user-1")
        assert stats.total_jobs == 3
        assert stats.results_last_7_days == 3
        assert stats.success_rate == pytest.approx(66.7)
        assert stats.avg_execution_time_ms == pytest.approx(200.0)
        assert stats.platforms_monitored == ["facebook", "linkedin", "twitter"]

    def test_stats_for_user_without_jobs(self, scheduler):
        stats = scheduler.get_monitoring_stats("nobody")
        assert stats.total_jobs == 0
        assert stats.success_rate == 0.0
