"""RivalWatch FastAPI application assembly.

Wires routers and lifespan management: APScheduler drives the job
processor on a fixed interval, with source monitors and gamification
triggers built from settings.
Run: uvicorn rivalwatch.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.orm import scoped_session, sessionmaker

from rivalwatch.alerts.router import router as alerts_router
from rivalwatch.config import get_settings
from rivalwatch.gamification.router import router as gamification_router
from rivalwatch.gamification.triggers import GamificationTriggers
from rivalwatch.monitoring.processor import JobProcessor
from rivalwatch.monitoring.router import router as monitoring_router
from rivalwatch.monitoring.scheduler import create_scheduler
from rivalwatch.monitoring.sources import build_default_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: start/stop APScheduler and the job processor.

    The processor uses its own thread-scoped session; every cycle commits,
    which expires loaded rows so the next cycle reads fresh state.
    """
    from rivalwatch.db.engine import engine

    settings = get_settings()
    sessions = scoped_session(sessionmaker(bind=engine))

    scheduler = create_scheduler()
    scheduler.start()

    api_key = settings.internal_api_key
    triggers = GamificationTriggers(
        sessions,
        endpoint_url=settings.gamification_endpoint_url,
        api_key=api_key.get_secret_value() if api_key else None,
        timeout=settings.http_timeout_seconds,
    )
    registry = build_default_registry(session_factory=sessions, settings=settings)
    processor = JobProcessor(sessions, registry, triggers=triggers, settings=settings)
    processor.start(scheduler, settings.processor_interval_minutes)

    app.state.scheduler = scheduler
    app.state.processor = processor
    app.state.triggers = triggers

    yield

    processor.stop()
    app.state.scheduler.shutdown(wait=False)
    sessions.remove()


app = FastAPI(title="RivalWatch", version="0.1.0", lifespan=lifespan)

app.include_router(monitoring_router)
app.include_router(alerts_router)
app.include_router(gamification_router)
