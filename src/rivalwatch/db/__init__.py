"""Database layer: engine, base models, session management."""

from rivalwatch.db.base import Base, TimestampMixin, as_utc, utcnow
from rivalwatch.db.engine import SessionLocal, create_db_engine, get_db, get_db_session

__all__ = [
    "Base",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    "create_db_engine",
    "SessionLocal",
    "get_db",
    "get_db_session",
]
