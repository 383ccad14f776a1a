"""Server side of the gamification endpoint.

apply_activity() is what the remote endpoint runs for each event: it
updates the user's counters, records victories, then unlocks any
achievements and badges that became reachable.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from rivalwatch.db.base import utcnow
from rivalwatch.exceptions import ValidationError
from rivalwatch.gamification.achievements import (
    check_achievements,
    competitive_position,
    get_or_create_stats,
)
from rivalwatch.gamification.models import CompetitiveVictory, UnlockedAchievement
from rivalwatch.gamification.schemas import (
    GamificationSummary,
    StatsResponse,
    UnlockedResponse,
    VictoryData,
)
from rivalwatch.gamification.triggers import STAT_COLUMNS, VICTORY_POINTS

logger = logging.getLogger(__name__)


def apply_activity(
    db: Session,
    user_id: str,
    activity_type: str,
    value: int = 1,
    victory_data: Optional[VictoryData] = None,
    now: Optional[datetime] = None,
) -> GamificationSummary:
    """Apply one activity to the user's stats and unlock achievements.

    intelligence_streak keeps the longer of the stored and reported streak;
    every other activity adds value to its counter. A competitive_victory
    also records the victory and adds its points.

    Raises:
        ValidationError: activity_type is unknown, or a victory has no data.
    """
    column = STAT_COLUMNS.get(activity_type)
    if column is None:
        raise ValidationError(
            f"Unknown activity type: {activity_type}",
            suggestion=f"Use one of: {', '.join(STAT_COLUMNS)}",
        )
    if activity_type == "competitive_victory" and victory_data is None:
        raise ValidationError("competitive_victory requires victory_data")
    now = now or utcnow()
    stats = get_or_create_stats(db, user_id)

    if activity_type == "intelligence_streak":
        stats.intelligence_streaks = max(stats.intelligence_streaks or 0, value)
    else:
        setattr(stats, column, (getattr(stats, column) or 0) + value)

    if activity_type == "competitive_victory":
        points = victory_data.points_awarded
        if points is None:
            points = VICTORY_POINTS[victory_data.impact_level]
        db.add(
            CompetitiveVictory(
                user_id=user_id,
                title=victory_data.title,
                description=victory_data.description,
                competitor_name=victory_data.competitor_name,
                victory_type=victory_data.victory_type,
                impact_level=victory_data.impact_level,
                points_awarded=points,
                evidence=victory_data.evidence,
            )
        )
        stats.competitive_advantage_points = (stats.competitive_advantage_points or 0) + points
        stats.total_points = (stats.total_points or 0) + points

    stats.last_activity_at = now
    db.flush()

    new_unlocks = check_achievements(db, user_id, now)
    db.commit()
    logger.info("Applied %s (%d) for user %s", activity_type, value, user_id)

    summary = get_summary(db, user_id)
    summary.new_unlocks = [UnlockedResponse.model_validate(row) for row in new_unlocks]
    return summary


def get_summary(db: Session, user_id: str) -> GamificationSummary:
    """Stats, position title and unlocked achievements; creates a zeroed row if missing."""
    stats = get_or_create_stats(db, user_id)
    unlocked = (
        db.query(UnlockedAchievement)
        .filter_by(user_id=user_id)
        .order_by(UnlockedAchievement.unlocked_at.asc())
        .all()
    )
    return GamificationSummary(
        stats=StatsResponse.model_validate(stats),
        position=competitive_position(stats.competitive_advantage_points or 0),
        unlocked=[UnlockedResponse.model_validate(row) for row in unlocked],
    )
