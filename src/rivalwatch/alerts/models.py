"""Competitor alert model.

Alerts are produced by the alert generator after each analysis pass and are
immutable except for the is_read / is_archived toggles.
"""

from typing import Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rivalwatch.db.base import Base, TimestampMixin

ALERT_SEVERITIES = ("info", "warning", "urgent", "critical")


class CompetitorAlert(TimestampMixin, Base):
    """User-facing alert with canned action items and recommended actions."""

    __tablename__ = "competitor_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    competitor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitor_profiles.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    source_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    action_items: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    recommended_actions: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_competitor_alerts_user_read", "user_id", "is_read"),
        Index("ix_competitor_alerts_competitor", "competitor_id", "severity"),
    )
