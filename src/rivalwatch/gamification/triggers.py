"""Gamification trigger layer: pipeline events -> point and counter updates.

Each event is first sent to the remote gamification endpoint. If that call
fails (transport error or non-2xx response), the matching counter column is
incremented directly in the database instead. The fallback is best-effort:
its own errors are logged and swallowed. Apart from generate_team_challenge,
no public method ever raises.

The remote-then-fallback path can double count when the remote update
succeeds but its response is lost; callers accept that.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from rivalwatch.alerts.models import CompetitorAlert
from rivalwatch.db.base import as_utc, naive_utc, utcnow
from rivalwatch.gamification.achievements import get_or_create_stats
from rivalwatch.gamification.models import (
    CompetitiveChallenge,
    LeaderboardEntry,
    UserCompetitiveStats,
)
from rivalwatch.monitoring.models import IntelligenceData

logger = logging.getLogger(__name__)

# activity_type -> UserCompetitiveStats counter column
STAT_COLUMNS: dict[str, str] = {
    "competitor_added": "competitors_monitored",
    "intelligence_gathered": "intelligence_gathered",
    "alert_processed": "alerts_processed",
    "opportunity_identified": "opportunities_identified",
    "competitive_task_completed": "competitive_tasks_completed",
    "threat_response": "threat_responses",
    "competitive_victory": "market_victories",
    "intelligence_streak": "intelligence_streaks",
}

VICTORY_POINTS: dict[str, int] = {
    "minor": 50,
    "moderate": 100,
    "major": 250,
    "game_changing": 500,
}

HIGH_PRIORITY_TASK_BONUS = 25
STREAK_EVENT_MIN_DAYS = 7
STREAK_LOOKBACK_DAYS = 30

TEAM_CHALLENGE_TITLE = "Team Intelligence Domination"
TEAM_CHALLENGE_DESCRIPTION = (
    "Work together to gather competitive intelligence and dominate the market"
)
TEAM_CHALLENGE_DAYS = 14
TEAM_OBJECTIVES: tuple[tuple[str, int], ...] = (
    ("Collectively monitor 20 competitors", 200),
    ("Process 100 competitive alerts as a team", 300),
    ("Identify 15 market opportunities together", 250),
    ("Achieve 5 competitive victories as a team", 500),
)


class GamificationTriggers:
    """Stateless event -> points facade.

    Args:
        session_factory: Returns the session used by the direct-write fallback.
            Caller manages session lifecycle.
        endpoint_url: Remote gamification endpoint; None skips straight to
            the fallback.
        api_key: Internal bearer key sent to the endpoint.
        http_client_factory: Builds the httpx.AsyncClient; injected by tests.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        endpoint_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self._http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=timeout)
        )
        self.clock = clock

    # ---------- events ----------

    async def on_competitor_added(self, user_id: str, competitor_id: int) -> None:
        await self.trigger(user_id, "competitor_added", 1)

    async def on_intelligence_gathered(self, user_id: str, count: int = 1) -> None:
        await self.trigger(user_id, "intelligence_gathered", count)

    async def on_alert_processed(self, user_id: str, alert_id: int) -> None:
        """Count a processed alert; urgent/critical alerts also count as a threat response."""
        await self.trigger(user_id, "alert_processed", 1)
        severity = self._alert_severity(user_id, alert_id)
        if severity in ("urgent", "critical"):
            await self.trigger(user_id, "threat_response", 1)

    async def on_opportunity_identified(
        self, user_id: str, opportunity_id: Optional[int] = None
    ) -> None:
        await self.trigger(user_id, "opportunity_identified", 1)

    async def on_competitive_task_completed(
        self, user_id: str, task_id: Any, priority: Optional[str] = None
    ) -> None:
        await self.trigger(user_id, "competitive_task_completed", 1)
        if priority in ("high", "critical"):
            await self.award_bonus_points(
                user_id, HIGH_PRIORITY_TASK_BONUS, f"{priority} priority task {task_id}"
            )

    async def on_intelligence_streak(self, user_id: str, days: int) -> None:
        await self.trigger(user_id, "intelligence_streak", days)

    async def on_competitive_victory(self, user_id: str, victory: dict) -> None:
        """Record a victory; points come from its impact_level tier."""
        impact = victory.get("impact_level", "minor")
        victory_data = {
            **victory,
            "impact_level": impact,
            "points_awarded": VICTORY_POINTS.get(impact, VICTORY_POINTS["minor"]),
        }
        await self.trigger(user_id, "competitive_victory", 1, victory_data)

    # ---------- streaks and bonuses ----------

    async def check_intelligence_streaks(self, user_id: str) -> int:
        """Recompute the consecutive-day collection streak ending today.

        Stores the streak (a gap resets it) and fires a streak event once it
        reaches 7 days. Returns the streak, or 0 if it could not be computed.
        """
        try:
            db = self._session_factory()
            today = self.clock().date()
            since = self.clock() - timedelta(days=STREAK_LOOKBACK_DAYS)
            rows = (
                db.query(IntelligenceData.collected_at)
                .filter(IntelligenceData.user_id == user_id)
                .filter(IntelligenceData.collected_at >= naive_utc(since))
                .all()
            )
            active_days = {as_utc(row.collected_at).date() for row in rows}

            streak = 0
            while streak < STREAK_LOOKBACK_DAYS and (today - timedelta(days=streak)) in active_days:
                streak += 1

            stats = get_or_create_stats(db, user_id)
            stats.intelligence_streaks = streak
            db.commit()
        except Exception as exc:
            logger.error("Failed to check intelligence streak for user %s: %s", user_id, exc)
            return 0

        if streak >= STREAK_EVENT_MIN_DAYS:
            await self.on_intelligence_streak(user_id, streak)
        return streak

    async def award_bonus_points(self, user_id: str, points: int, reason: str) -> None:
        """Add points to competitive_advantage_points and total_points."""
        db = None
        try:
            db = self._session_factory()
            get_or_create_stats(db, user_id)
            db.query(UserCompetitiveStats).filter_by(user_id=user_id).update(
                {
                    "competitive_advantage_points": UserCompetitiveStats.competitive_advantage_points
                    + points,
                    "total_points": UserCompetitiveStats.total_points + points,
                },
                synchronize_session=False,
            )
            db.commit()
            logger.info("Awarded %d bonus points to user %s: %s", points, user_id, reason)
        except Exception as exc:
            if db is not None:
                db.rollback()
            logger.error("Failed to award bonus points to user %s: %s", user_id, exc)

    # ---------- challenges and leaderboard ----------

    async def generate_team_challenge(self, user_ids: list[str]) -> str:
        """Give each team member their own copy of a 14-day challenge.

        Rows are keyed "<challenge id>_<user id>". Returns the shared
        challenge id.

        Raises:
            Exception: whatever the database raised; nothing is written.
        """
        now = self.clock()
        challenge_id = f"team_challenge_{int(now.timestamp() * 1000)}"
        db = None
        try:
            db = self._session_factory()
            for user_id in user_ids:
                db.add(
                    CompetitiveChallenge(
                        id=f"{challenge_id}_{user_id}",
                        user_id=user_id,
                        title=TEAM_CHALLENGE_TITLE,
                        description=TEAM_CHALLENGE_DESCRIPTION,
                        objectives=[
                            {"task": task, "points": points, "completed": False}
                            for task, points in TEAM_OBJECTIVES
                        ],
                        total_points=sum(points for _, points in TEAM_OBJECTIVES),
                        expires_at=now + timedelta(days=TEAM_CHALLENGE_DAYS),
                        created_at=now,
                    )
                )
            db.commit()
        except Exception as exc:
            if db is not None:
                db.rollback()
            logger.error("Failed to create team challenge %s: %s", challenge_id, exc)
            raise
        logger.info("Created team challenge %s for %d users", challenge_id, len(user_ids))
        return challenge_id

    async def update_leaderboards(self) -> None:
        """Copy every user's stats into the leaderboard and re-rank it.

        rank_position orders by points, then victories. percentile is the
        percent rank by points alone (0 for the leader, tied users share
        it), scaled to 0-100 and rounded to 2 places.
        """
        db = None
        try:
            db = self._session_factory()
            now = self.clock()
            entries = {entry.user_id: entry for entry in db.query(LeaderboardEntry).all()}
            for stats in db.query(UserCompetitiveStats).all():
                entry = entries.get(stats.user_id)
                if entry is None:
                    entry = LeaderboardEntry(user_id=stats.user_id)
                    db.add(entry)
                entry.competitive_advantage_points = stats.competitive_advantage_points or 0
                entry.market_victories = stats.market_victories or 0
                entry.intelligence_gathered = stats.intelligence_gathered or 0
                entry.last_updated = now
            db.flush()

            points = LeaderboardEntry.competitive_advantage_points
            ranked = db.query(
                LeaderboardEntry,
                func.row_number().over(
                    order_by=(points.desc(), LeaderboardEntry.market_victories.desc())
                ),
                func.percent_rank().over(order_by=points.desc()),
            ).all()
            for entry, rank, percent_rank in ranked:
                entry.rank_position = rank
                entry.percentile = round(percent_rank * 100, 2)
            db.commit()
            logger.info("Leaderboard updated for %d users", len(ranked))
        except Exception as exc:
            if db is not None:
                db.rollback()
            logger.error("Failed to update leaderboards: %s", exc)

    # ---------- remote + fallback ----------

    async def trigger(
        self,
        user_id: str,
        activity_type: str,
        value: int = 1,
        victory_data: Optional[dict] = None,
    ) -> None:
        """Send one event remotely, falling back to a direct counter write."""
        try:
            if await self._send_remote(user_id, activity_type, value, victory_data):
                return
        except Exception as exc:
            logger.error(
                "Gamification endpoint failed for %s (user %s): %s; using direct write",
                activity_type, user_id, exc,
            )
        self._apply_fallback(user_id, activity_type, value, victory_data)

    async def _send_remote(
        self,
        user_id: str,
        activity_type: str,
        value: int,
        victory_data: Optional[dict],
    ) -> bool:
        """POST the event. False if no endpoint is configured; raises on failure."""
        if not self.endpoint_url:
            return False
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload: dict[str, Any] = {
            "user_id": user_id,
            "activity_type": activity_type,
            "value": value,
        }
        if victory_data is not None:
            payload["victory_data"] = victory_data

        async with self._http_client_factory() as client:
            response = await client.post(self.endpoint_url, json=payload, headers=headers)
            response.raise_for_status()
        return True

    def _apply_fallback(
        self,
        user_id: str,
        activity_type: str,
        value: int,
        victory_data: Optional[dict],
    ) -> None:
        """Additive update of the activity's counter column. Never raises."""
        column = STAT_COLUMNS.get(activity_type)
        if column is None:
            logger.error("Unknown gamification activity type: %s", activity_type)
            return

        db = None
        try:
            db = self._session_factory()
            get_or_create_stats(db, user_id)

            attr = getattr(UserCompetitiveStats, column)
            if activity_type == "intelligence_streak":
                values: dict[Any, Any] = {column: case((attr < value, value), else_=attr)}
            else:
                values = {column: attr + value}
            if activity_type == "competitive_victory":
                points = int((victory_data or {}).get("points_awarded", 0))
                values["competitive_advantage_points"] = (
                    UserCompetitiveStats.competitive_advantage_points + points
                )
                values["total_points"] = UserCompetitiveStats.total_points + points
            values["last_activity_at"] = self.clock()

            db.query(UserCompetitiveStats).filter_by(user_id=user_id).update(
                values, synchronize_session=False
            )
            db.commit()
            logger.info(
                "Gamification fallback: %s += %s for user %s", column, value, user_id
            )
        except Exception as exc:
            if db is not None:
                db.rollback()
            logger.error(
                "Gamification fallback failed for %s (user %s): %s",
                activity_type, user_id, exc,
            )

    def _alert_severity(self, user_id: str, alert_id: int) -> Optional[str]:
        try:
            alert = (
                self._session_factory()
                .query(CompetitorAlert)
                .filter_by(id=alert_id, user_id=user_id)
                .first()
            )
        except Exception as exc:
            logger.error("Failed to load alert %s for %s: %s", alert_id, user_id, exc)
            return None
        return alert.severity if alert is not None else None
