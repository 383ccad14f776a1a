"""Pydantic schemas for posts, job configs, and monitoring API payloads.

Job configs are a closed tagged union keyed by job_type: every stored config
blob carries its job_type and is validated back into the matching record by
parse_job_config().
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ---------- Posts ----------


class EngagementMetrics(BaseModel):
    """Interaction counts for a single post."""

    likes: int = 0
    shares: int = 0
    comments: int = 0
    views: int = 0

    @property
    def total(self) -> int:
        """Engagement used for ranking: likes + shares + comments."""
        return self.likes + self.shares + self.comments


class Post(BaseModel):
    """A normalized post/event returned by any source monitor."""

    id: str
    platform: str
    content: str = ""
    author: str = ""
    published_at: datetime
    engagement: EngagementMetrics = Field(default_factory=EngagementMetrics)
    media_urls: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    mentions: list[str] = Field(default_factory=list)
    url: Optional[str] = None


# ---------- Job configs ----------


class MonitoringConfig(BaseModel):
    """User-facing monitoring settings for one competitor."""

    platforms: list[str] = Field(
        default_factory=lambda: ["linkedin", "twitter", "facebook", "instagram"]
    )
    frequency: Literal["hourly", "daily", "weekly"] = "daily"
    priority: Literal["low", "medium", "high"] = "medium"
    enabled: bool = True
    keywords: list[str] = Field(default_factory=list)


class MonitoringConfigUpdate(BaseModel):
    """Partial update; unset fields leave existing job settings unchanged."""

    platforms: Optional[list[str]] = None
    frequency: Optional[Literal["hourly", "daily", "weekly"]] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    enabled: Optional[bool] = None
    keywords: Optional[list[str]] = None


class SocialMediaJobConfig(BaseModel):
    job_type: Literal["social_media"] = "social_media"
    platform: str
    handle: str
    monitoring_config: dict[str, Any] = Field(default_factory=dict)


class WebsiteJobConfig(BaseModel):
    job_type: Literal["website"] = "website"
    url: str
    selectors: dict[str, str] = Field(default_factory=dict)
    monitoring_config: dict[str, Any] = Field(default_factory=dict)


class JobPostingJobConfig(BaseModel):
    job_type: Literal["job_posting"] = "job_posting"
    url: str
    board: Optional[str] = None
    monitoring_config: dict[str, Any] = Field(default_factory=dict)


JobConfig = Annotated[
    Union[SocialMediaJobConfig, WebsiteJobConfig, JobPostingJobConfig],
    Field(discriminator="job_type"),
]

_job_config_adapter = TypeAdapter(JobConfig)


def parse_job_config(blob: Optional[dict]) -> JobConfig:
    """Validate a stored config blob into its job-type record.

    Raises pydantic.ValidationError if required fields are missing.
    """
    return _job_config_adapter.validate_python(blob or {})


# ---------- Page monitoring ----------


class PageSnapshot(BaseModel):
    """One fetch of a competitor web page, reduced to comparable text."""

    url: str
    status_code: int
    title: str = ""
    description: Optional[str] = None
    text: str = ""
    content_hash: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    selected: dict[str, str] = Field(default_factory=dict)
    fetched_at: datetime


class PageChange(BaseModel):
    url: str
    change_type: Literal["content", "metadata", "selector"]
    field: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    detected_at: datetime


class JobListing(BaseModel):
    """An open role found on a competitor careers page."""

    title: str
    department: Optional[str] = None
    location: Optional[str] = None
    type: Literal["full-time", "part-time", "contract", "internship"] = "full-time"
    remote: bool = False
    url: Optional[str] = None
    strategic_importance: Literal["low", "medium", "high", "critical"] = "low"


# ---------- API payloads ----------


class ScheduleRequest(BaseModel):
    user_id: str
    config: Optional[MonitoringConfig] = None


class PageMonitoringConfig(BaseModel):
    """Website and careers-page monitoring settings for one competitor.

    Omitted URLs fall back to the competitor's website and <website>/careers.
    The careers page is polled one frequency step less often than the website.
    """

    website_url: Optional[str] = None
    jobs_url: Optional[str] = None
    include_jobs: bool = True
    selectors: dict[str, str] = Field(default_factory=dict)
    frequency: Literal["hourly", "daily", "weekly"] = "daily"
    priority: Literal["low", "medium", "high"] = "medium"
    enabled: bool = True


class PageMonitoringRequest(BaseModel):
    user_id: str
    config: Optional[PageMonitoringConfig] = None


class ConfigUpdateRequest(BaseModel):
    user_id: str
    config: MonitoringConfigUpdate


class JobResponse(BaseModel):
    """Response schema for a single monitoring job."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    competitor_id: int
    job_type: str
    url: str
    priority: str
    frequency_value: str
    status: str
    retry_count: int
    max_retries: int
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    config: Optional[dict] = None


class JobResultResponse(BaseModel):
    """Response schema for one processing attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: str
    success: bool
    data: Optional[dict] = None
    error: Optional[str] = None
    execution_time_ms: int
    changes_detected: bool
    retry_count: int
    completed_at: datetime


class MonitoringStatus(BaseModel):
    """Jobs and recent results for one competitor."""

    competitor_id: int
    jobs: list[JobResponse] = Field(default_factory=list)
    recent_results: list[JobResultResponse] = Field(default_factory=list)
    active_jobs: int = 0
    paused_jobs: int = 0
    failed_jobs: int = 0


class MonitoringStats(BaseModel):
    """Aggregate monitoring statistics for one user."""

    total_jobs: int = 0
    active_jobs: int = 0
    paused_jobs: int = 0
    failed_jobs: int = 0
    success_rate: float = Field(0.0, ge=0, le=100)
    avg_execution_time_ms: float = 0.0
    platforms_monitored: list[str] = Field(default_factory=list)
    results_last_7_days: int = 0


class CycleSummary(BaseModel):
    """Outcome of one processing cycle."""

    skipped: bool = False
    jobs_processed: int = 0
    page_jobs_processed: int = 0
    competitors_analyzed: int = 0
    alerts_created: int = 0
    results_pruned: int = 0
