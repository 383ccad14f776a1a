"""Turn categorized insights into persisted competitor alerts.

The mapping is table-driven (ALERT_RULES):

| insight category        | filter                 | alert type              | severity |
|-------------------------|------------------------|-------------------------|----------|
| competitive_advantages  | impact = high          | competitive_advantage   | info     |
| risk_factors            | severity = high        | competitive_opportunity | warning  |
| content_opportunities   | impact = high / medium | content_insight         | info     |

Alert persistence failures are logged and swallowed: a failed insert never
aborts the analysis pass that produced the insight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rivalwatch.alerts.models import CompetitorAlert
from rivalwatch.analysis.insights import Insight
from rivalwatch.monitoring.models import Competitor

logger = logging.getLogger(__name__)

RECOMMENDED_ACTION_PRIORITY = "medium"
RECOMMENDED_ACTION_EFFORT = "1-2 hours"


@dataclass(frozen=True)
class AlertRule:
    category: str
    matches: Callable[[Insight], bool]
    alert_type: str
    severity: str
    title: Callable[[str, Insight], str]
    description: Callable[[Insight], str]
    action_items: tuple[str, ...]


ALERT_RULES: tuple[AlertRule, ...] = (
    AlertRule(
        category="competitive_advantages",
        matches=lambda i: i.impact == "high",
        alert_type="competitive_advantage",
        severity="info",
        title=lambda name, i: f"{name} gaining competitive advantage",
        description=lambda i: f"{i.description} on {i.platform}",
        action_items=(
            "Analyze their content strategy",
            "Consider counter-positioning",
            "Monitor for campaign launches",
        ),
    ),
    AlertRule(
        category="risk_factors",
        matches=lambda i: i.severity == "high",
        alert_type="competitive_opportunity",
        severity="warning",
        title=lambda name, i: f"Opportunity detected: {name} showing weakness",
        description=lambda i: f"{i.description} on {i.platform}",
        action_items=(
            "Capitalize on their weakness",
            "Increase activity on this platform",
            "Target their audience with better content",
        ),
    ),
    AlertRule(
        category="content_opportunities",
        matches=lambda i: i.impact in ("high", "medium"),
        alert_type="content_insight",
        severity="info",
        title=lambda name, i: f"Content strategy insight for {name}",
        description=lambda i: i.recommendation or i.description,
        action_items=(
            "Analyze their content approach",
            "Adapt successful elements",
            "Create differentiated content",
        ),
    ),
)


@dataclass
class AlertDraft:
    """An alert ready to insert; the pure output of identify_alertable_events."""

    alert_type: str
    severity: str
    title: str
    description: str
    source_data: dict = field(default_factory=dict)
    action_items: list[str] = field(default_factory=list)
    recommended_actions: list[dict] = field(default_factory=list)


def recommended_actions_for(action_items: list[str]) -> list[dict]:
    return [
        {
            "action": item,
            "priority": RECOMMENDED_ACTION_PRIORITY,
            "estimated_effort": RECOMMENDED_ACTION_EFFORT,
        }
        for item in action_items
    ]


def identify_alertable_events(
    competitor_name: str, insights: dict[str, list[Insight]]
) -> list[AlertDraft]:
    """Apply ALERT_RULES to every insight. Insights matching no rule are dropped."""
    drafts = []
    for rule in ALERT_RULES:
        for insight in insights.get(rule.category, []):
            if not rule.matches(insight):
                continue
            action_items = list(rule.action_items)
            drafts.append(
                AlertDraft(
                    alert_type=rule.alert_type,
                    severity=rule.severity,
                    title=rule.title(competitor_name, insight),
                    description=rule.description(insight),
                    source_data={
                        "insight": insight.model_dump(),
                        "platform": insight.platform,
                    },
                    action_items=action_items,
                    recommended_actions=recommended_actions_for(action_items),
                )
            )
    return drafts


def create_alert(
    db: Session, competitor: Competitor, draft: AlertDraft
) -> Optional[CompetitorAlert]:
    """Insert one alert. Returns None (after logging) if the insert fails."""
    alert = CompetitorAlert(
        competitor_id=competitor.id,
        user_id=competitor.user_id,
        alert_type=draft.alert_type,
        severity=draft.severity,
        title=draft.title,
        description=draft.description,
        source_data=draft.source_data,
        action_items=draft.action_items,
        recommended_actions=draft.recommended_actions,
        is_read=False,
        is_archived=False,
    )
    try:
        db.add(alert)
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Failed to create %s alert for competitor %d: %s",
            draft.alert_type, competitor.id, exc,
        )
        return None
    return alert


def generate_alerts(
    db: Session, competitor: Competitor, insights: dict[str, list[Insight]]
) -> list[CompetitorAlert]:
    """Identify and persist alerts for one competitor's insights."""
    created = []
    for draft in identify_alertable_events(competitor.name, insights):
        alert = create_alert(db, competitor, draft)
        if alert is not None:
            created.append(alert)
    if created:
        logger.info(
            "Created %d alerts for competitor %s (%d)",
            len(created), competitor.name, competitor.id,
        )
    return created


def mark_read(db: Session, alert_id: int, is_read: bool = True) -> Optional[CompetitorAlert]:
    """Toggle is_read. The only other mutation alerts allow is archiving."""
    alert = db.get(CompetitorAlert, alert_id)
    if alert is not None:
        alert.is_read = is_read
        db.flush()
    return alert


def archive(db: Session, alert_id: int) -> Optional[CompetitorAlert]:
    alert = db.get(CompetitorAlert, alert_id)
    if alert is not None:
        alert.is_archived = True
        db.flush()
    return alert
