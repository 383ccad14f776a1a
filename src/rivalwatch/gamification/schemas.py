"""Pydantic schemas for the gamification endpoint."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ActivityType = Literal[
    "competitor_added",
    "intelligence_gathered",
    "alert_processed",
    "opportunity_identified",
    "competitive_task_completed",
    "competitive_victory",
    "intelligence_streak",
    "threat_response",
]


class VictoryData(BaseModel):
    title: str
    description: Optional[str] = None
    competitor_name: Optional[str] = None
    victory_type: Optional[str] = None
    impact_level: Literal["minor", "moderate", "major", "game_changing"] = "minor"
    points_awarded: Optional[int] = Field(None, ge=0)
    evidence: Optional[dict] = None


class ActivityRequest(BaseModel):
    """Body accepted by the gamification endpoint."""

    user_id: str
    activity_type: ActivityType
    value: int = Field(1, ge=0)
    victory_data: Optional[VictoryData] = None


class StatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    competitors_monitored: int
    intelligence_gathered: int
    alerts_processed: int
    opportunities_identified: int
    competitive_tasks_completed: int
    market_victories: int
    threat_responses: int
    intelligence_streaks: int
    competitive_advantage_points: int
    total_points: int


class UnlockedResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    achievement_id: str
    kind: str
    points_awarded: int
    unlocked_at: datetime


class GamificationSummary(BaseModel):
    stats: StatsResponse
    position: str
    unlocked: list[UnlockedResponse] = Field(default_factory=list)
    new_unlocks: list[UnlockedResponse] = Field(default_factory=list)


class TeamChallengeRequest(BaseModel):
    user_ids: list[str] = Field(..., min_length=1)


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    rank_position: Optional[int]
    percentile: Optional[float]
    competitive_advantage_points: int
    market_victories: int
    intelligence_gathered: int
