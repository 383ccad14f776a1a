"""Job Store and Competitor Directory over a SQLAlchemy session.

Thin persistence seams used by the scheduler and processor. Every mutation
is a single-row update or an append-only insert; callers decide when to
commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from rivalwatch.db.base import naive_utc
from rivalwatch.exceptions import CompetitorNotFoundError, JobNotFoundError
from rivalwatch.monitoring.models import (
    Competitor,
    IntelligenceData,
    JobResult,
    MonitoringJob,
)

logger = logging.getLogger(__name__)


class JobStore:
    """Persistence operations for MonitoringJob and JobResult rows."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def insert(self, job: MonitoringJob) -> MonitoringJob:
        self.db.add(job)
        self.db.flush()
        return job

    def get(self, job_id: str) -> MonitoringJob:
        job = self.db.get(MonitoringJob, job_id)
        if job is None:
            raise JobNotFoundError(detail=f"job_id={job_id}")
        return job

    def update(self, job_id: str, patch: dict[str, Any]) -> MonitoringJob:
        """Apply a field patch to one job and flush."""
        job = self.get(job_id)
        for field, value in patch.items():
            if not hasattr(MonitoringJob, field):
                raise AttributeError(f"MonitoringJob has no field '{field}'")
            setattr(job, field, value)
        self.db.flush()
        return job

    def select_due_jobs(
        self, now: datetime, job_types: tuple[str, ...] = ("social_media",)
    ) -> list[MonitoringJob]:
        """Pending jobs of the given types whose next_run_at has passed, oldest first."""
        return (
            self.db.query(MonitoringJob)
            .filter(MonitoringJob.job_type.in_(job_types))
            .filter(MonitoringJob.status == "pending")
            .filter(MonitoringJob.next_run_at <= naive_utc(now))
            .order_by(MonitoringJob.next_run_at.asc())
            .all()
        )

    def select_by_competitor(
        self,
        competitor_id: int,
        user_id: str,
        job_type: Optional[str] = "social_media",
    ) -> list[MonitoringJob]:
        query = self.db.query(MonitoringJob).filter_by(
            competitor_id=competitor_id, user_id=user_id
        )
        if job_type is not None:
            query = query.filter_by(job_type=job_type)
        return query.order_by(MonitoringJob.created_at.asc()).all()

    def select_by_user(self, user_id: str) -> list[MonitoringJob]:
        return self.db.query(MonitoringJob).filter_by(user_id=user_id).all()

    def insert_result(self, result: JobResult) -> JobResult:
        self.db.add(result)
        self.db.flush()
        return result

    def results_for_jobs(
        self,
        job_ids: list[str],
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[JobResult]:
        """Results for the given jobs, newest first."""
        if not job_ids:
            return []
        query = self.db.query(JobResult).filter(JobResult.job_id.in_(job_ids))
        if since is not None:
            query = query.filter(JobResult.completed_at >= naive_utc(since))
        query = query.order_by(JobResult.completed_at.desc(), JobResult.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def delete_results_older_than(self, cutoff: datetime) -> int:
        """Bulk-delete JobResult rows completed before cutoff. Jobs are untouched."""
        deleted = (
            self.db.query(JobResult)
            .filter(JobResult.completed_at < naive_utc(cutoff))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted


class CompetitorDirectory:
    """Read access to competitor handles/status; write access to last_analyzed."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, competitor_id: int, user_id: Optional[str] = None) -> Competitor:
        """Look up a competitor, optionally scoped to its owner.

        Raises:
            CompetitorNotFoundError: No such competitor for this user.
        """
        query = self.db.query(Competitor).filter_by(id=competitor_id)
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        competitor = query.first()
        if competitor is None:
            raise CompetitorNotFoundError(
                detail=f"competitor_id={competitor_id} user_id={user_id}"
            )
        return competitor

    @staticmethod
    def handle_for(competitor: Competitor, platform: str) -> Optional[str]:
        handle = (competitor.social_media_handles or {}).get(platform)
        return handle.strip() if isinstance(handle, str) and handle.strip() else None

    def list_active(self) -> list[Competitor]:
        return (
            self.db.query(Competitor)
            .filter(Competitor.monitoring_status == "active")
            .order_by(Competitor.id.asc())
            .all()
        )

    def mark_analyzed(self, competitor: Competitor, when: datetime) -> None:
        competitor.last_analyzed = when
        self.db.flush()

    def intelligence_since(
        self,
        competitor_id: int,
        since: datetime,
        platform: Optional[str] = None,
    ) -> list[IntelligenceData]:
        """Collected intelligence rows for a competitor inside a window."""
        query = (
            self.db.query(IntelligenceData)
            .filter(IntelligenceData.competitor_id == competitor_id)
            .filter(IntelligenceData.source_type == "social_media")
            .filter(IntelligenceData.collected_at >= naive_utc(since))
        )
        if platform is not None:
            query = query.filter(IntelligenceData.platform == platform)
        return query.order_by(IntelligenceData.collected_at.desc()).all()

    def latest_intelligence(
        self, competitor_id: int, platform: str, source_url: Optional[str] = None
    ) -> Optional[IntelligenceData]:
        query = self.db.query(IntelligenceData).filter_by(
            competitor_id=competitor_id, platform=platform
        )
        if source_url is not None:
            query = query.filter_by(source_url=source_url)
        return query.order_by(
            IntelligenceData.collected_at.desc(), IntelligenceData.id.desc()
        ).first()
