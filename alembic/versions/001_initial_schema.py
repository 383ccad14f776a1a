"""Initial schema: monitoring pipeline, alerts and gamification tables.

Revision ID: 001
Revises: None
Create Date: 2026-03-02

Creates: competitor_profiles, social_media_connections, scraping_jobs,
         scraping_job_results, intelligence_data, competitor_alerts,
         user_competitive_stats, user_achievements, competitive_victories
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create all tables."""

    # -- competitor_profiles --
    op.create_table(
        "competitor_profiles",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("industry", sa.String(200), nullable=True),
        sa.Column("social_media_handles", sa.JSON, nullable=True),
        sa.Column("monitoring_status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("last_analyzed", sa.DateTime, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_competitor_profiles_user_id", "competitor_profiles", ["user_id"])

    # -- social_media_connections --
    op.create_table(
        "social_media_connections",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("token_secret", sa.Text, nullable=True),
        sa.Column("account_id", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "platform", name="uq_social_connection_user_platform"),
    )
    op.create_index(
        "ix_social_media_connections_user_id", "social_media_connections", ["user_id"]
    )

    # -- scraping_jobs --
    op.create_table(
        "scraping_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "competitor_id",
            sa.Integer,
            sa.ForeignKey("competitor_profiles.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(30), nullable=False),
        sa.Column("url", sa.String(2000), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("frequency_type", sa.String(20), nullable=False, server_default="interval"),
        sa.Column("frequency_value", sa.String(20), nullable=False, server_default="daily"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("next_run_at", sa.DateTime, nullable=True),
        sa.Column("last_run_at", sa.DateTime, nullable=True),
        sa.Column("config", sa.JSON, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_scraping_jobs_competitor_id", "scraping_jobs", ["competitor_id"])
    op.create_index("ix_scraping_jobs_due", "scraping_jobs", ["job_type", "status", "next_run_at"])
    op.create_index(
        "ix_scraping_jobs_owner", "scraping_jobs", ["competitor_id", "user_id", "job_type"]
    )

    # -- scraping_job_results --
    op.create_table(
        "scraping_job_results",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("job_id", sa.String(36), sa.ForeignKey("scraping_jobs.id"), nullable=False),
        sa.Column("success", sa.Boolean, nullable=False),
        sa.Column("data", sa.JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("execution_time_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("changes_detected", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_scraping_job_results_job_id", "scraping_job_results", ["job_id"])
    op.create_index(
        "ix_scraping_job_results_completed_at", "scraping_job_results", ["completed_at"]
    )

    # -- intelligence_data --
    op.create_table(
        "intelligence_data",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "competitor_id",
            sa.Integer,
            sa.ForeignKey("competitor_profiles.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("source_type", sa.String(30), nullable=False, server_default="social_media"),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("data_type", sa.String(50), nullable=False),
        sa.Column("source_url", sa.String(2000), nullable=True),
        sa.Column("raw_content", sa.JSON, nullable=True),
        sa.Column("extracted_data", sa.JSON, nullable=True),
        sa.Column("importance", sa.String(10), nullable=False, server_default="low"),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("collected_at", sa.DateTime, nullable=False),
    )
    op.create_index(
        "ix_intelligence_data_window", "intelligence_data", ["competitor_id", "collected_at"]
    )

    # -- competitor_alerts --
    op.create_table(
        "competitor_alerts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "competitor_id",
            sa.Integer,
            sa.ForeignKey("competitor_profiles.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("source_data", sa.JSON, nullable=True),
        sa.Column("action_items", sa.JSON, nullable=True),
        sa.Column("recommended_actions", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("is_archived", sa.Boolean, nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "ix_competitor_alerts_user_read", "competitor_alerts", ["user_id", "is_read"]
    )
    op.create_index(
        "ix_competitor_alerts_competitor", "competitor_alerts", ["competitor_id", "severity"]
    )

    # -- user_competitive_stats --
    counters = (
        "competitors_monitored",
        "intelligence_gathered",
        "alerts_processed",
        "opportunities_identified",
        "competitive_tasks_completed",
        "market_victories",
        "threat_responses",
        "intelligence_streaks",
        "competitive_advantage_points",
        "total_points",
    )
    op.create_table(
        "user_competitive_stats",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        *[
            sa.Column(name, sa.Integer, nullable=False, server_default="0")
            for name in counters
        ],
        sa.Column("last_activity_at", sa.DateTime, nullable=True),
        *_timestamps(),
    )

    # -- user_achievements --
    op.create_table(
        "user_achievements",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("achievement_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False, server_default="achievement"),
        sa.Column("points_awarded", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unlocked_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )
    op.create_index("ix_user_achievements_user_id", "user_achievements", ["user_id"])

    # -- competitive_victories --
    op.create_table(
        "competitive_victories",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("competitor_name", sa.String(200), nullable=True),
        sa.Column("victory_type", sa.String(50), nullable=True),
        sa.Column("impact_level", sa.String(20), nullable=False, server_default="minor"),
        sa.Column("points_awarded", sa.Integer, nullable=False, server_default="0"),
        sa.Column("evidence", sa.JSON, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_competitive_victories_user_id", "competitive_victories", ["user_id"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index("ix_competitive_victories_user_id", table_name="competitive_victories")
    op.drop_table("competitive_victories")
    op.drop_index("ix_user_achievements_user_id", table_name="user_achievements")
    op.drop_table("user_achievements")
    op.drop_table("user_competitive_stats")
    op.drop_index("ix_competitor_alerts_competitor", table_name="competitor_alerts")
    op.drop_index("ix_competitor_alerts_user_read", table_name="competitor_alerts")
    op.drop_table("competitor_alerts")
    op.drop_index("ix_intelligence_data_window", table_name="intelligence_data")
    op.drop_table("intelligence_data")
    op.drop_index("ix_scraping_job_results_completed_at", table_name="scraping_job_results")
    op.drop_index("ix_scraping_job_results_job_id", table_name="scraping_job_results")
    op.drop_table("scraping_job_results")
    op.drop_index("ix_scraping_jobs_owner", table_name="scraping_jobs")
    op.drop_index("ix_scraping_jobs_due", table_name="scraping_jobs")
    op.drop_index("ix_scraping_jobs_competitor_id", table_name="scraping_jobs")
    op.drop_table("scraping_jobs")
    op.drop_index(
        "ix_social_media_connections_user_id", table_name="social_media_connections"
    )
    op.drop_table("social_media_connections")
    op.drop_index("ix_competitor_profiles_user_id", table_name="competitor_profiles")
    op.drop_table("competitor_profiles")
