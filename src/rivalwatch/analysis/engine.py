"""Engagement, posting-frequency and audience analysis over collected posts.

Pattern extraction over counts and timestamps, not prediction. The pure
functions take a list of Post records; the analyze_* wrappers load a
rolling window of IntelligenceData for one competitor, group it by
platform, and return one result dict per platform.

Engagement is likes + shares + comments throughout.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Hashable, Optional

from sqlalchemy.orm import Session

from rivalwatch.db.base import as_utc, utcnow
from rivalwatch.monitoring.schemas import Post
from rivalwatch.monitoring.store import CompetitorDirectory

logger = logging.getLogger(__name__)

# Trend threshold: +/-10% change between window halves
TREND_THRESHOLD = 0.1

# Days between posts that count as a gap in the cadence
GAP_DAYS = 3

THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "product": ("product", "launch", "feature", "release", "update", "new"),
    "hiring": ("hiring", "job", "career", "join our team", "position", "recruit"),
    "funding": ("funding", "investment", "raised", "series", "investor", "round"),
    "customer_success": ("customer", "client", "success story", "testimonial", "case study"),
    "events": ("event", "conference", "webinar", "summit", "meetup"),
}


def engagement_of(post: Post) -> int:
    return post.engagement.total


def detect_content_type(post: Post) -> str:
    """Classify a post as carousel, video, image, link or text."""
    if len(post.media_urls) > 1:
        return "carousel"
    if post.media_urls:
        media = post.media_urls[0].lower()
        if "video" in media or ".mp4" in media or "youtube.com/watch" in media:
            return "video"
        if "image" in media or ".jpg" in media or ".jpeg" in media or ".png" in media:
            return "image"
    if "http" in post.content:
        return "link"
    return "text"


def _rank(posts: list[Post], key: Callable[[Post], Hashable]) -> list[dict]:
    """Group posts by key and rank groups by average engagement, descending."""
    groups: dict[Hashable, list[Post]] = defaultdict(list)
    for post in posts:
        groups[key(post)].append(post)

    ranked = []
    for value, members in groups.items():
        total = sum(engagement_of(p) for p in members)
        views = sum(p.engagement.views for p in members)
        ranked.append(
            {
                "key": value,
                "post_count": len(members),
                "total_engagement": total,
                "avg_engagement": round(total / len(members), 2),
                "engagement_rate": round(total / views, 4) if views else 0.0,
            }
        )
    ranked.sort(key=lambda g: (-g["avg_engagement"], -g["post_count"], str(g["key"])))
    return ranked


def time_of_day_patterns(posts: list[Post]) -> list[dict]:
    return _rank(posts, lambda p: as_utc(p.published_at).hour)


def day_of_week_patterns(posts: list[Post]) -> list[dict]:
    return _rank(posts, lambda p: as_utc(p.published_at).strftime("%A"))


def content_type_patterns(posts: list[Post]) -> list[dict]:
    return _rank(posts, detect_content_type)


def hashtag_patterns(posts: list[Post], min_uses: int = 2) -> list[dict]:
    """Hashtags used at least min_uses times, with engagement boost in percent.

    Boost compares average engagement of posts carrying the tag against
    posts without it.
    """
    counts: dict[str, int] = defaultdict(int)
    for post in posts:
        for tag in set(post.hashtags):
            counts[tag] += 1

    patterns = []
    for tag, uses in counts.items():
        if uses < min_uses:
            continue
        with_tag = [engagement_of(p) for p in posts if tag in p.hashtags]
        without = [engagement_of(p) for p in posts if tag not in p.hashtags]
        avg_with = sum(with_tag) / len(with_tag)
        avg_without = sum(without) / len(without) if without else 0.0
        if avg_without:
            boost = (avg_with - avg_without) / avg_without * 100
        else:
            boost = 100.0 if avg_with > 0 else 0.0
        patterns.append(
            {
                "hashtag": tag,
                "uses": uses,
                "avg_engagement": round(avg_with, 2),
                "engagement_boost": round(boost, 1),
            }
        )
    patterns.sort(key=lambda p: (-p["avg_engagement"], p["hashtag"]))
    return patterns


def calculate_trend(values: list[float]) -> str:
    """Compare the means of the first and second half of a series.

    Returns "increasing" above +10% change, "decreasing" below -10%,
    otherwise "stable". Fewer than two values is "stable".
    """
    if len(values) < 2:
        return "stable"
    half = len(values) // 2
    first = statistics.fmean(values[:half])
    second = statistics.fmean(values[half:])
    if first == 0:
        return "increasing" if second > 0 else "stable"
    change = (second - first) / first
    if change > TREND_THRESHOLD:
        return "increasing"
    if change < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


def _series_stats(values: list[int]) -> dict:
    if not values:
        return {"average": 0.0, "min": 0, "max": 0, "trend": "stable"}
    return {
        "average": round(statistics.fmean(values), 2),
        "min": min(values),
        "max": max(values),
        "trend": calculate_trend(values),
    }


def _post_dates(posts: list[Post]) -> list[date]:
    return [as_utc(p.published_at).date() for p in posts]


def posting_frequency(posts: list[Post]) -> dict:
    """Daily, weekly and monthly post counts with average/min/max/trend.

    Daily counts cover every calendar day from the first to the last post,
    zero days included, in chronological order.
    """
    if not posts:
        empty = _series_stats([])
        return {"daily": empty, "weekly": empty, "monthly": empty}

    dates = _post_dates(posts)
    per_day: dict[date, int] = defaultdict(int)
    per_week: dict[tuple[int, int], int] = defaultdict(int)
    per_month: dict[tuple[int, int], int] = defaultdict(int)
    for d in dates:
        per_day[d] += 1
        iso = d.isocalendar()
        per_week[(iso[0], iso[1])] += 1
        per_month[(d.year, d.month)] += 1

    start, end = min(dates), max(dates)
    span = (end - start).days + 1
    daily = [per_day.get(start + timedelta(days=i), 0) for i in range(span)]

    return {
        "daily": _series_stats(daily),
        "weekly": _series_stats([per_week[k] for k in sorted(per_week)]),
        "monthly": _series_stats([per_month[k] for k in sorted(per_month)]),
    }


def _gap_reason(days: int) -> str:
    if days > 30:
        return "Extended hiatus; account may be deprioritized"
    if days >= 15:
        return "Long break; possible strategy change"
    if days >= 7:
        return "Possible vacation or campaign pause"
    return "Short break"


def _consistency_pattern(score: int) -> str:
    if score > 80:
        return "regular"
    if score > 60:
        return "irregular"
    if score > 30:
        return "sporadic"
    return "burst"


def posting_consistency(posts: list[Post]) -> dict:
    """Consistency score (0-100) of a posting cadence.

    score = max(0, 100 - 10 * gaps - 20 * cv), rounded, where a gap is
    more than 3 days between consecutive active days and cv is the
    coefficient of variation of posts per active day.
    """
    if not posts:
        return {"score": 0, "pattern": "burst", "gaps": [], "coefficient_of_variation": 0.0}

    per_day: dict[date, int] = defaultdict(int)
    for d in _post_dates(posts):
        per_day[d] += 1
    active_days = sorted(per_day)

    gaps = []
    for prev, current in zip(active_days, active_days[1:]):
        days = (current - prev).days
        if days > GAP_DAYS:
            gaps.append(
                {
                    "start": prev.isoformat(),
                    "end": current.isoformat(),
                    "days": days,
                    "reason": _gap_reason(days),
                }
            )

    counts = [per_day[d] for d in active_days]
    mean = statistics.fmean(counts)
    cv = statistics.pstdev(counts) / mean if len(counts) > 1 and mean else 0.0

    score = round(max(0.0, 100 - len(gaps) * 10 - cv * 20))
    return {
        "score": score,
        "pattern": _consistency_pattern(score),
        "gaps": gaps,
        "coefficient_of_variation": round(cv, 3),
    }


def optimal_timing(posts: list[Post]) -> dict:
    """Best three and worst two days and hours by average engagement."""
    days = day_of_week_patterns(posts)
    hours = time_of_day_patterns(posts)
    return {
        "best_days": [d["key"] for d in days[:3]],
        "worst_days": [d["key"] for d in days[-2:]][::-1] if len(days) > 3 else [],
        "best_hours": [h["key"] for h in hours[:3]],
        "worst_hours": [h["key"] for h in hours[-2:]][::-1] if len(hours) > 3 else [],
    }


def _growth_rate(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    half = len(values) // 2
    first = statistics.fmean(values[:half])
    second = statistics.fmean(values[half:])
    if first == 0:
        return 0.0
    return round((second - first) / first * 100, 1)


def audience_metrics(posts: list[Post]) -> dict:
    """Reach, engagement rate and growing/stable/declining engagement trend.

    The trend is taken over average engagement per active day, oldest first.
    """
    if not posts:
        return {
            "total_reach": 0,
            "avg_engagement_rate": 0.0,
            "engagement_trend": "stable",
            "growth_rate": 0.0,
            "top_interaction_types": [],
            "active_hours": [],
        }

    per_day: dict[date, list[int]] = defaultdict(list)
    for post in posts:
        per_day[as_utc(post.published_at).date()].append(engagement_of(post))
    daily_avg = [statistics.fmean(per_day[d]) for d in sorted(per_day)]

    trend = calculate_trend(daily_avg)
    engagement_trend = {"increasing": "growing", "decreasing": "declining"}.get(trend, "stable")

    reach = sum(p.engagement.views for p in posts)
    total = sum(engagement_of(p) for p in posts)
    interactions = {
        "likes": sum(p.engagement.likes for p in posts),
        "comments": sum(p.engagement.comments for p in posts),
        "shares": sum(p.engagement.shares for p in posts),
    }
    by_hour = sorted(
        _rank(posts, lambda p: as_utc(p.published_at).hour),
        key=lambda g: (-g["post_count"], g["key"]),
    )

    return {
        "total_reach": reach,
        "avg_engagement_rate": round(total / reach, 4) if reach else 0.0,
        "engagement_trend": engagement_trend,
        "growth_rate": _growth_rate(daily_avg),
        "top_interaction_types": [
            name for name, count in sorted(interactions.items(), key=lambda i: -i[1]) if count
        ],
        "active_hours": [g["key"] for g in by_hour[:3]],
    }


# ---------- Content summary ----------


def detect_themes(posts: list[Post]) -> list[dict]:
    """Keyword-based themes; posts matching none fall under "general"."""
    themed: dict[str, list[Post]] = defaultdict(list)
    for post in posts:
        text = post.content.lower()
        matched = [
            theme
            for theme, keywords in THEME_KEYWORDS.items()
            if any(keyword in text for keyword in keywords)
        ]
        for theme in matched or ["general"]:
            themed[theme].append(post)

    return sorted(
        (
            {
                "theme": theme,
                "post_count": len(members),
                "avg_engagement": round(
                    sum(engagement_of(p) for p in members) / len(members), 2
                ),
            }
            for theme, members in themed.items()
        ),
        key=lambda t: (-t["post_count"], t["theme"]),
    )


def classify_importance(posts: list[Post]) -> str:
    """Importance of a batch from its average engagement."""
    if not posts:
        return "low"
    avg = sum(engagement_of(p) for p in posts) / len(posts)
    if avg > 1000:
        return "critical"
    if avg > 500:
        return "high"
    if avg > 100:
        return "medium"
    return "low"


# ---------- Windowed analyses ----------


def load_posts(
    db: Session,
    competitor_id: int,
    days: int,
    platform: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, list[Post]]:
    """Posts collected in the last `days` days, grouped by platform, newest first.

    Posts collected repeatedly across fetches are de-duplicated by id.
    """
    now = now or utcnow()
    since = now - timedelta(days=days)
    rows = CompetitorDirectory(db).intelligence_since(competitor_id, since, platform)

    grouped: dict[str, dict[str, Post]] = defaultdict(dict)
    for row in rows:
        for raw in row.raw_content or []:
            post = Post.model_validate(raw)
            if as_utc(post.published_at) < since:
                continue
            # rows are newest first; keep the most recent engagement snapshot
            grouped[row.platform].setdefault(post.id, post)

    return {
        name: sorted(posts.values(), key=lambda p: as_utc(p.published_at), reverse=True)
        for name, posts in grouped.items()
    }


def analyze_engagement_patterns(
    db: Session,
    competitor_id: int,
    platform: Optional[str] = None,
    days: int = 7,
    now: Optional[datetime] = None,
) -> dict[str, dict]:
    """Time-of-day, day-of-week, content-type and hashtag patterns per platform."""
    results = {}
    for name, posts in load_posts(db, competitor_id, days, platform, now).items():
        hours = time_of_day_patterns(posts)
        types = content_type_patterns(posts)
        insights = []
        recommendations = []
        if hours:
            insights.append(f"Peak engagement at {hours[0]['key']}:00")
            recommendations.append(f"Schedule key posts around {hours[0]['key']}:00")
        if types:
            insights.append(f"{types[0]['key']} content shows highest engagement")
            recommendations.append(f"Test more {types[0]['key']} content")
        results[name] = {
            "platform": name,
            "post_count": len(posts),
            "time_of_day": hours,
            "day_of_week": day_of_week_patterns(posts),
            "content_types": types,
            "hashtags": hashtag_patterns(posts),
            "insights": insights,
            "recommendations": recommendations,
        }
    return results


def analyze_posting_frequency(
    db: Session,
    competitor_id: int,
    platform: Optional[str] = None,
    days: int = 30,
    now: Optional[datetime] = None,
) -> dict[str, dict]:
    """Posting frequency, consistency score and optimal timing per platform."""
    results = {}
    for name, posts in load_posts(db, competitor_id, days, platform, now).items():
        results[name] = {
            "platform": name,
            "post_count": len(posts),
            "frequency": posting_frequency(posts),
            "consistency": posting_consistency(posts),
            "optimal_timing": optimal_timing(posts),
        }
    return results


def analyze_audience(
    db: Session,
    competitor_id: int,
    platform: Optional[str] = None,
    days: int = 30,
    now: Optional[datetime] = None,
) -> dict[str, dict]:
    """Reach and engagement-trend classification per platform."""
    return {
        name: {"platform": name, "post_count": len(posts), **audience_metrics(posts)}
        for name, posts in load_posts(db, competitor_id, days, platform, now).items()
    }
