"""Monitoring data models: competitors, credentials, jobs, results, intelligence.

All models inherit from Base. Jobs are never physically deleted, only marked
paused or failed. JobResult rows form an append-only audit log that is pruned
in bulk after the retention window. IntelligenceData holds one row per
successful fetch and is the input window for the analysis engine.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rivalwatch.db.base import Base, TimestampMixin


def _new_job_id() -> str:
    return str(uuid.uuid4())


class Competitor(TimestampMixin, Base):
    """A competitor profile owned by one user.

    social_media_handles maps platform id to the competitor's handle on that
    platform, e.g. {"twitter": "acme", "linkedin": "acme-inc"}.
    """

    __tablename__ = "competitor_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    social_media_handles: Mapped[Optional[dict]] = mapped_column(
        JSON, nullable=True
    )
    monitoring_status: Mapped[str] = mapped_column(
        String(20), default="active", nullable=False
    )
    last_analyzed: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )


class SocialConnection(TimestampMixin, Base):
    """Per-user platform credentials used by the source monitors."""

    __tablename__ = "social_media_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    account_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_social_connection_user_platform"),
    )


class MonitoringJob(TimestampMixin, Base):
    """One scheduled unit of monitoring work for a (competitor, platform) pair.

    status=running is transient: every processing attempt sets it back to
    pending or failed before returning. config carries the job-type specific
    record (see schemas.parse_job_config).
    """

    __tablename__ = "scraping_jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_job_id
    )
    competitor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitor_profiles.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_type: Mapped[str] = mapped_column(String(30), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), default="medium", nullable=False)
    frequency_type: Mapped[str] = mapped_column(
        String(20), default="interval", nullable=False
    )
    frequency_value: Mapped[str] = mapped_column(
        String(20), default="daily", nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_scraping_jobs_due", "job_type", "status", "next_run_at"),
        Index("ix_scraping_jobs_owner", "competitor_id", "user_id", "job_type"),
    )


class JobResult(Base):
    """Outcome of one processing attempt. Rows are never updated."""

    __tablename__ = "scraping_job_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scraping_jobs.id"), nullable=False, index=True
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    changes_detected: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class IntelligenceData(Base):
    """One successful fetch: posts, a page snapshot or job listings, plus derived metrics."""

    __tablename__ = "intelligence_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    competitor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitor_profiles.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_type: Mapped[str] = mapped_column(
        String(30), default="social_media", nullable=False
    )
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_url: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    raw_content: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True
    )  # Post, PageSnapshot or JobListing dicts
    extracted_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    importance: Mapped[str] = mapped_column(String(10), default="low", nullable=False)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    collected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_intelligence_data_window", "competitor_id", "collected_at"),
    )
