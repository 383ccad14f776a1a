"""Threshold-based achievements and badges.

Each achievement and badge names a counter on UserCompetitiveStats and a
target. It unlocks the first time the counter reaches the target, is
recorded once in user_achievements, and adds its points to total_points
exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from rivalwatch.db.base import utcnow
from rivalwatch.gamification.models import UnlockedAchievement, UserCompetitiveStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    metric: str
    target: int
    points: int
    rarity: str = "common"
    kind: str = "achievement"


BADGE_TIER_POINTS = {
    "bronze": 50,
    "silver": 100,
    "gold": 200,
    "platinum": 500,
    "diamond": 1000,
}


def _badge(id: str, name: str, description: str, metric: str, threshold: int, tier: str) -> Achievement:
    return Achievement(
        id=id,
        name=name,
        description=description,
        metric=metric,
        target=threshold,
        points=BADGE_TIER_POINTS[tier],
        rarity=tier,
        kind="badge",
    )


ACHIEVEMENTS: tuple[Achievement, ...] = (
    # Monitoring
    Achievement("first_competitor", "First Target", "Start monitoring your first competitor",
                "competitors_monitored", 1, 25),
    Achievement("intelligence_network", "Intelligence Network", "Monitor five competitors",
                "competitors_monitored", 5, 100, "rare"),
    # Collection
    Achievement("data_collector", "Data Collector", "Gather 100 pieces of intelligence",
                "intelligence_gathered", 100, 150, "rare"),
    Achievement("intelligence_master", "Intelligence Master", "Gather 1000 pieces of intelligence",
                "intelligence_gathered", 1000, 500, "legendary"),
    # Alerts
    Achievement("alert_responder", "Alert Responder", "Process your first alert",
                "alerts_processed", 1, 20),
    Achievement("threat_detector", "Threat Detector", "Process 50 alerts",
                "alerts_processed", 50, 120, "rare"),
    Achievement("early_warning_system", "Early Warning System", "Process 200 alerts",
                "alerts_processed", 200, 300, "epic"),
    # Opportunities
    Achievement("opportunity_spotter", "Opportunity Spotter", "Identify your first opportunity",
                "opportunities_identified", 1, 30),
    Achievement("opportunity_hunter", "Opportunity Hunter", "Identify 25 opportunities",
                "opportunities_identified", 25, 200, "rare"),
    Achievement("market_oracle", "Market Oracle", "Identify 100 opportunities",
                "opportunities_identified", 100, 750, "legendary"),
    # Victories
    Achievement("first_victory", "First Victory", "Record your first market victory",
                "market_victories", 1, 100, "rare"),
    Achievement("market_dominator", "Market Dominator", "Record 10 market victories",
                "market_victories", 10, 500, "epic"),
    Achievement("empire_empress", "Empire Builder", "Record 50 market victories",
                "market_victories", 50, 2000, "legendary"),
    # Tasks
    Achievement("quick_responder", "Quick Responder", "Complete 10 competitive tasks",
                "competitive_tasks_completed", 10, 150, "rare"),
    Achievement("strategic_mastermind", "Strategic Mastermind", "Complete 50 competitive tasks",
                "competitive_tasks_completed", 50, 400, "epic"),
    # Streaks
    Achievement("intelligence_streak_7", "Week of Vigilance", "Gather intelligence 7 days in a row",
                "intelligence_streaks", 7, 100, "rare"),
    Achievement("intelligence_streak_30", "Month of Vigilance", "Gather intelligence 30 days in a row",
                "intelligence_streaks", 30, 1000, "legendary"),
)

BADGES: tuple[Achievement, ...] = (
    _badge("market_spy", "Market Spy", "Prolific intelligence gatherer",
           "intelligence_gathered", 50, "bronze"),
    _badge("threat_analyst", "Threat Analyst", "Seasoned alert handler",
           "alerts_processed", 100, "silver"),
    _badge("opportunity_seeker", "Opportunity Seeker", "Consistent opportunity finder",
           "opportunities_identified", 50, "gold"),
    _badge("market_conqueror", "Market Conqueror", "Serial market winner",
           "market_victories", 25, "platinum"),
    _badge("intelligence_overlord", "Intelligence Overlord", "Top-tier competitive advantage",
           "competitive_advantage_points", 10000, "diamond"),
)

POSITION_TIERS = (
    (100, "Intelligence Rookie"),
    (500, "Market Analyst"),
    (1000, "Strategic Advisor"),
    (2500, "Competitive Strategist"),
    (5000, "Market Dominator"),
)


def competitive_position(points: int) -> str:
    """Title for a competitive_advantage_points total."""
    for ceiling, title in POSITION_TIERS:
        if points < ceiling:
            return title
    return "Intelligence Overlord"


def get_or_create_stats(db: Session, user_id: str) -> UserCompetitiveStats:
    """Return the user's stats row, inserting a zeroed one if missing."""
    stats = db.query(UserCompetitiveStats).filter_by(user_id=user_id).first()
    if stats is None:
        stats = UserCompetitiveStats(
            user_id=user_id,
            competitors_monitored=0,
            intelligence_gathered=0,
            alerts_processed=0,
            opportunities_identified=0,
            competitive_tasks_completed=0,
            market_victories=0,
            threat_responses=0,
            intelligence_streaks=0,
            competitive_advantage_points=0,
            total_points=0,
        )
        db.add(stats)
        db.flush()
    return stats


def check_achievements(
    db: Session, user_id: str, now: Optional[datetime] = None
) -> list[UnlockedAchievement]:
    """Unlock every achievement and badge whose target the user has reached.

    Already-unlocked ids are skipped, so calling this repeatedly awards
    each achievement's points only once.

    Returns:
        Newly unlocked rows (empty when nothing changed).
    """
    now = now or utcnow()
    stats = get_or_create_stats(db, user_id)
    unlocked_ids = {
        row.achievement_id
        for row in db.query(UnlockedAchievement).filter_by(user_id=user_id).all()
    }

    newly_unlocked = []
    for achievement in ACHIEVEMENTS + BADGES:
        if achievement.id in unlocked_ids:
            continue
        if (getattr(stats, achievement.metric) or 0) < achievement.target:
            continue
        row = UnlockedAchievement(
            user_id=user_id,
            achievement_id=achievement.id,
            kind=achievement.kind,
            points_awarded=achievement.points,
            unlocked_at=now,
        )
        db.add(row)
        stats.total_points = (stats.total_points or 0) + achievement.points
        unlocked_ids.add(achievement.id)
        newly_unlocked.append(row)
        logger.info(
            "User %s unlocked %s '%s' (+%d points)",
            user_id, achievement.kind, achievement.id, achievement.points,
        )

    if newly_unlocked:
        db.flush()
    return newly_unlocked
