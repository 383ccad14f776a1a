"""Gamification data models: per-user counters, unlocks, victories, challenges
and the leaderboard.

UserCompetitiveStats counters are monotonic except intelligence_streaks,
which holds the current streak length and resets on a gap day.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from rivalwatch.db.base import Base, TimestampMixin


class UserCompetitiveStats(TimestampMixin, Base):
    """Aggregate competitive-intelligence counters for one user."""

    __tablename__ = "user_competitive_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    competitors_monitored: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    intelligence_gathered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    alerts_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    opportunities_identified: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    competitive_tasks_completed: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    market_victories: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    threat_responses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    intelligence_streaks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    competitive_advantage_points: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )


class UnlockedAchievement(Base):
    """An achievement or badge unlocked by a user. Recorded exactly once."""

    __tablename__ = "user_achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    achievement_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(20), default="achievement", nullable=False
    )  # achievement | badge
    points_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )


class CompetitiveVictory(TimestampMixin, Base):
    """A market win recorded by the user against a competitor."""

    __tablename__ = "competitive_victories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    competitor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    victory_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    impact_level: Mapped[str] = mapped_column(String(20), default="minor", nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    evidence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)


class CompetitiveChallenge(Base):
    """One member's copy of a team challenge.

    The id is "<challenge id>_<user id>"; members of the same team share
    the challenge id prefix.
    """

    __tablename__ = "competitive_challenges"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    objectives: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )


class LeaderboardEntry(Base):
    """A user's row in the global leaderboard, rebuilt from their stats."""

    __tablename__ = "competitive_leaderboard"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    competitive_advantage_points: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    market_victories: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    intelligence_gathered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rank_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    percentile: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 0 = top
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)
