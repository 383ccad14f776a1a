"""FastAPI endpoints for reading and acknowledging competitor alerts.

Marking an alert read counts as processing it for gamification.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from rivalwatch.alerts.generator import archive, mark_read
from rivalwatch.alerts.models import CompetitorAlert
from rivalwatch.db.engine import get_db_session

router = APIRouter(prefix="/api/competitive-intelligence/alerts", tags=["alerts"])


class AlertResponse(BaseModel):
    """Response schema for a single alert."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    competitor_id: int
    user_id: str
    alert_type: str
    severity: str
    title: str
    description: str
    action_items: list[str] = Field(default_factory=list)
    recommended_actions: list[dict] = Field(default_factory=list)
    is_read: bool
    is_archived: bool
    created_at: datetime


@router.get("", response_model=list[AlertResponse])
async def list_alerts(
    user_id: str = Query(...),
    competitor_id: Optional[int] = Query(None),
    severity: Optional[str] = Query(None),
    is_read: Optional[bool] = Query(None),
    include_archived: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    db=Depends(get_db_session),
) -> list[CompetitorAlert]:
    query = db.query(CompetitorAlert).filter_by(user_id=user_id)
    if competitor_id is not None:
        query = query.filter_by(competitor_id=competitor_id)
    if severity is not None:
        query = query.filter_by(severity=severity)
    if is_read is not None:
        query = query.filter_by(is_read=is_read)
    if not include_archived:
        query = query.filter_by(is_archived=False)
    return query.order_by(CompetitorAlert.created_at.desc(), CompetitorAlert.id.desc()).limit(limit).all()


@router.post("/{alert_id}/read", response_model=AlertResponse)
async def read_alert(
    alert_id: int,
    request: Request,
    db=Depends(get_db_session),
) -> CompetitorAlert:
    alert = db.get(CompetitorAlert, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    first_read = not alert.is_read
    mark_read(db, alert_id)
    db.commit()

    triggers = getattr(request.app.state, "triggers", None)
    if first_read and triggers is not None:
        await triggers.on_alert_processed(alert.user_id, alert_id)
    return alert


@router.post("/{alert_id}/archive", response_model=AlertResponse)
async def archive_alert(alert_id: int, db=Depends(get_db_session)) -> CompetitorAlert:
    alert = archive(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    db.commit()
    return alert
