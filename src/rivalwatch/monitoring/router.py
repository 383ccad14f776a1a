"""FastAPI endpoints for competitor monitoring.

Schedule, pause, resume and reconfigure monitoring jobs; inspect job status
and statistics; trigger a processing cycle or a single competitor's
analysis on demand.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from rivalwatch.db.engine import get_db_session
from rivalwatch.exceptions import CompetitorNotFoundError, DatabaseError
from rivalwatch.monitoring.processor import JobProcessor
from rivalwatch.monitoring.scheduler import MonitoringScheduler
from rivalwatch.monitoring.schemas import (
    ConfigUpdateRequest,
    CycleSummary,
    MonitoringStats,
    MonitoringStatus,
    PageMonitoringRequest,
    ScheduleRequest,
)

router = APIRouter(prefix="/api/competitive-intelligence/monitoring", tags=["monitoring"])


def get_processor(request: Request) -> JobProcessor:
    """The app-wide JobProcessor created in the lifespan."""
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise HTTPException(status_code=503, detail="Job processor not running")
    return processor


@router.get("/stats", response_model=MonitoringStats)
async def monitoring_stats(
    user_id: str = Query(...),
    db=Depends(get_db_session),
) -> MonitoringStats:
    return MonitoringScheduler(db).get_monitoring_stats(user_id)


@router.get("/processor")
async def processor_status(processor: JobProcessor = Depends(get_processor)) -> dict:
    return processor.get_status()


@router.post("/process", response_model=CycleSummary)
async def trigger_cycle(processor: JobProcessor = Depends(get_processor)) -> CycleSummary:
    """Run a processing cycle now. Returns skipped=true if one is in progress."""
    return await processor.process_jobs()


@router.post("/{competitor_id}/schedule")
async def schedule_monitoring(
    competitor_id: int,
    body: ScheduleRequest,
    db=Depends(get_db_session),
) -> dict:
    try:
        job_ids = MonitoringScheduler(db).schedule_monitoring(
            competitor_id, body.user_id, body.config
        )
    except CompetitorNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DatabaseError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"competitor_id": competitor_id, "job_ids": job_ids}


@router.post("/{competitor_id}/pages")
async def schedule_page_monitoring(
    competitor_id: int,
    body: PageMonitoringRequest,
    db=Depends(get_db_session),
) -> dict:
    """Watch the competitor website and, unless disabled, its careers page."""
    try:
        job_ids = MonitoringScheduler(db).schedule_page_monitoring(
            competitor_id, body.user_id, body.config
        )
    except CompetitorNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DatabaseError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"competitor_id": competitor_id, "job_ids": job_ids}


@router.put("/{competitor_id}/config")
async def update_config(
    competitor_id: int,
    body: ConfigUpdateRequest,
    db=Depends(get_db_session),
) -> dict:
    try:
        job_ids = MonitoringScheduler(db).update_monitoring_config(
            competitor_id, body.user_id, body.config
        )
    except CompetitorNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DatabaseError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"competitor_id": competitor_id, "created_job_ids": job_ids}


@router.post("/{competitor_id}/pause")
async def pause_monitoring(
    competitor_id: int,
    user_id: str = Query(...),
    db=Depends(get_db_session),
) -> dict:
    paused = MonitoringScheduler(db).pause_monitoring(competitor_id, user_id)
    return {"competitor_id": competitor_id, "paused": paused}


@router.post("/{competitor_id}/resume")
async def resume_monitoring(
    competitor_id: int,
    user_id: str = Query(...),
    db=Depends(get_db_session),
) -> dict:
    resumed = MonitoringScheduler(db).resume_monitoring(competitor_id, user_id)
    return {"competitor_id": competitor_id, "resumed": resumed}


@router.get("/{competitor_id}/status", response_model=MonitoringStatus)
async def monitoring_status(
    competitor_id: int,
    user_id: str = Query(...),
    db=Depends(get_db_session),
) -> MonitoringStatus:
    return MonitoringScheduler(db).get_monitoring_status(competitor_id, user_id)


@router.post("/{competitor_id}/analyze")
async def analyze_competitor(
    competitor_id: int,
    user_id: str = Query(...),
    processor: JobProcessor = Depends(get_processor),
) -> dict:
    try:
        return await processor.analyze_competitor(competitor_id, user_id)
    except CompetitorNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
