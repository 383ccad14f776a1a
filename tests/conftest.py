"""Test fixtures for RivalWatch integration tests.

Uses a temp-file SQLite database with the production PRAGMAs. Each test
runs inside an outer transaction that is rolled back afterwards, so
session.commit() inside the code under test is safe.
"""

import os
import tempfile
from datetime import datetime, timezone

# Keep the module-level engine off the filesystem before rivalwatch is imported
os.environ.setdefault("RIVALWATCH_DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

from rivalwatch.alerts.models import CompetitorAlert  # noqa: F401 -- ensure models registered
from rivalwatch.config import Settings
from rivalwatch.db.base import Base
from rivalwatch.gamification.models import (  # noqa: F401 -- ensure models registered
    CompetitiveChallenge,
    CompetitiveVictory,
    LeaderboardEntry,
    UnlockedAchievement,
    UserCompetitiveStats,
)
from rivalwatch.monitoring.models import (  # noqa: F401 -- ensure models registered
    Competitor,
    IntelligenceData,
    JobResult,
    MonitoringJob,
    SocialConnection,
)
from rivalwatch.monitoring.schemas import EngagementMetrics, Post

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_engine():
    """Create a temp-file SQLite test database with all tables."""
    tmpfile = tempfile.NamedTemporaryFile(
        suffix=".db", delete=False, prefix="rivalwatch_test_"
    )
    db_path = tmpfile.name
    tmpfile.close()

    engine = create_engine(f"sqlite:///{db_path}", echo=False)

    @event.listens_for(engine, "connect")
    def set_pragmas(dbapi_conn, conn_rec):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def db_session(test_engine):
    """Create a database session for each test.

    Rolls back all changes after each test to maintain isolation.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def settings():
    """Settings with short timeouts and no remote gamification endpoint."""
    return Settings(
        database_url="sqlite://",
        job_timeout_seconds=5.0,
        gamification_endpoint_url="",
        _env_file=None,
    )


@pytest.fixture
def clock():
    """A controllable clock starting at FIXED_NOW. Set clock.now to move time."""

    class _Clock:
        now = FIXED_NOW

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture
def sample_competitor(db_session):
    """Competitor with handles on three of the four default platforms."""
    competitor = Competitor(
        user_id="user-1",
        name="Acme Analytics",
        website="https://acme.example",
        social_media_handles={
            "linkedin": "acme-analytics",
            "twitter": "acmeanalytics",
            "facebook": "acmeanalytics",
        },
        monitoring_status="active",
    )
    db_session.add(competitor)
    db_session.commit()
    db_session.refresh(competitor)
    return competitor


@pytest.fixture
def second_competitor(db_session):
    competitor = Competitor(
        user_id="user-1",
        name="Beta Insights",
        social_media_handles={"twitter": "betainsights"},
        monitoring_status="active",
    )
    db_session.add(competitor)
    db_session.commit()
    db_session.refresh(competitor)
    return competitor


def make_post(
    post_id: str,
    published_at: datetime,
    likes: int = 10,
    shares: int = 0,
    comments: int = 0,
    views: int = 0,
    content: str = "Weekly update",
    media_urls: list[str] | None = None,
    hashtags: list[str] | None = None,
    platform: str = "twitter",
) -> Post:
    """Build a Post with sensible defaults for analysis tests."""
    return Post(
        id=post_id,
        platform=platform,
        content=content,
        author="acme",
        published_at=published_at,
        engagement=EngagementMetrics(
            likes=likes, shares=shares, comments=comments, views=views
        ),
        media_urls=media_urls or [],
        hashtags=hashtags or [],
    )


@pytest.fixture(name="make_post")
def make_post_fixture():
    return make_post
