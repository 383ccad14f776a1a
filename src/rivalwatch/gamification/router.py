"""FastAPI endpoint backing the gamification trigger layer.

POST records one activity (called by GamificationTriggers with the
internal bearer key); GET returns a user's stats, creating a zeroed row
on first access. Team challenges and leaderboard refreshes are internal
calls too.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from rivalwatch.config import get_settings
from rivalwatch.db.engine import get_db_session
from rivalwatch.exceptions import ValidationError
from rivalwatch.gamification.models import LeaderboardEntry
from rivalwatch.gamification.schemas import (
    ActivityRequest,
    GamificationSummary,
    LeaderboardEntryResponse,
    TeamChallengeRequest,
)
from rivalwatch.gamification.service import apply_activity, get_summary
from rivalwatch.gamification.triggers import GamificationTriggers

router = APIRouter(prefix="/api/competitive-intelligence/gamification", tags=["gamification"])


def require_internal_key(authorization: Optional[str] = Header(None)) -> None:
    """Reject calls without the internal key, when one is configured."""
    key = get_settings().internal_api_key
    if key is None:
        return
    if authorization != f"Bearer {key.get_secret_value()}":
        raise HTTPException(status_code=401, detail="Invalid internal API key")


@router.post("", response_model=GamificationSummary, dependencies=[Depends(require_internal_key)])
async def record_activity(body: ActivityRequest, db=Depends(get_db_session)) -> GamificationSummary:
    try:
        return apply_activity(
            db,
            body.user_id,
            body.activity_type,
            value=body.value,
            victory_data=body.victory_data,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/challenges/team", dependencies=[Depends(require_internal_key)])
async def create_team_challenge(body: TeamChallengeRequest, db=Depends(get_db_session)) -> dict:
    try:
        challenge_id = await GamificationTriggers(lambda: db).generate_team_challenge(
            body.user_ids
        )
    except Exception as exc:
        raise HTTPException(status_code=500, detail="Failed to create team challenge") from exc
    return {"challenge_id": challenge_id, "user_ids": body.user_ids}


@router.post(
    "/leaderboard",
    response_model=list[LeaderboardEntryResponse],
    dependencies=[Depends(require_internal_key)],
)
async def refresh_leaderboard(db=Depends(get_db_session)) -> list[LeaderboardEntry]:
    """Rebuild the leaderboard and return it in rank order."""
    await GamificationTriggers(lambda: db).update_leaderboards()
    return db.query(LeaderboardEntry).order_by(LeaderboardEntry.rank_position.asc()).all()


@router.get("/{user_id}", response_model=GamificationSummary)
async def read_stats(user_id: str, db=Depends(get_db_session)) -> GamificationSummary:
    summary = get_summary(db, user_id)
    db.commit()
    return summary
