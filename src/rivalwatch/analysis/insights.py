"""Derive categorized insights from the three per-platform analyses.

Insights are ephemeral: they are rebuilt on every analysis pass and only
survive as the alerts generated from them.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

InsightCategory = Literal[
    "engagement_trends",
    "content_opportunities",
    "timing_insights",
    "audience_changes",
    "competitive_advantages",
    "risk_factors",
]

INSIGHT_CATEGORIES: tuple[str, ...] = (
    "engagement_trends",
    "content_opportunities",
    "timing_insights",
    "audience_changes",
    "competitive_advantages",
    "risk_factors",
)

# Consistency scores below this raise an inconsistent_posting risk
CONSISTENCY_RISK_THRESHOLD = 70


class Insight(BaseModel):
    """One derived observation about a competitor on one platform."""

    category: InsightCategory
    type: str
    platform: str
    description: str
    impact: Optional[Literal["low", "medium", "high"]] = None
    severity: Optional[Literal["low", "medium", "high"]] = None
    recommendation: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


def generate_insights(
    engagement: dict[str, dict],
    frequency: dict[str, dict],
    audience: dict[str, dict],
) -> dict[str, list[Insight]]:
    """Map analysis results to insights, keyed by category.

    Every category is present in the result, possibly empty.
    """
    insights: dict[str, list[Insight]] = {category: [] for category in INSIGHT_CATEGORIES}

    for platform, result in engagement.items():
        content_types = result.get("content_types") or []
        if content_types:
            top = content_types[0]
            insights["content_opportunities"].append(
                Insight(
                    category="content_opportunities",
                    type="top_content_type",
                    platform=platform,
                    description=f"Top performing content type on {platform}: {top['key']}",
                    impact="medium",
                    recommendation=f"{top['key']} content shows highest engagement",
                    data=top,
                )
            )
        hours = result.get("time_of_day") or []
        if hours:
            top = hours[0]
            insights["timing_insights"].append(
                Insight(
                    category="timing_insights",
                    type="peak_hour",
                    platform=platform,
                    description=f"Peak engagement at {top['key']}:00",
                    impact="high",
                    data=top,
                )
            )

    for platform, result in frequency.items():
        consistency = result.get("consistency") or {}
        score = consistency.get("score")
        if score is not None and score < CONSISTENCY_RISK_THRESHOLD:
            insights["risk_factors"].append(
                Insight(
                    category="risk_factors",
                    type="inconsistent_posting",
                    platform=platform,
                    description=f"Low posting consistency ({score}%)",
                    severity="medium",
                    data=consistency,
                )
            )
        daily = (result.get("frequency") or {}).get("daily") or {}
        if daily.get("trend") == "increasing":
            insights["engagement_trends"].append(
                Insight(
                    category="engagement_trends",
                    type="increasing_activity",
                    platform=platform,
                    description="Posting activity is increasing",
                    impact="medium",
                    data=daily,
                )
            )

    for platform, result in audience.items():
        trend = result.get("engagement_trend")
        if trend == "growing":
            insights["competitive_advantages"].append(
                Insight(
                    category="competitive_advantages",
                    type="growing_engagement",
                    platform=platform,
                    description="Audience engagement is growing",
                    impact="high",
                    data={"growth_rate": result.get("growth_rate", 0.0)},
                )
            )
        elif trend == "declining":
            insights["risk_factors"].append(
                Insight(
                    category="risk_factors",
                    type="declining_engagement",
                    platform=platform,
                    description="Audience engagement is declining",
                    severity="high",
                    data={"growth_rate": result.get("growth_rate", 0.0)},
                )
            )
        if trend in ("growing", "declining"):
            insights["audience_changes"].append(
                Insight(
                    category="audience_changes",
                    type=f"audience_{trend}",
                    platform=platform,
                    description=f"Engagement {trend} ({result.get('growth_rate', 0.0)}% between window halves)",
                    impact="medium",
                    data={
                        "total_reach": result.get("total_reach", 0),
                        "avg_engagement_rate": result.get("avg_engagement_rate", 0.0),
                    },
                )
            )

    return insights
