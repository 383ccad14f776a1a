"""Post sentiment scoring.

The default scorer is a bag-of-words lexicon: each positive-word hit adds
0.2, each negative-word hit subtracts 0.2, and the score is clamped to
[-1, 1]. The "vader" scorer swaps in VADER's compound score. Both share
the same labels: positive above 0.1, negative below -0.1, else neutral.

Uses lazy import for VADER so the lexicon path never pays its load time.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Literal

from rivalwatch.db.base import as_utc
from rivalwatch.monitoring.schemas import Post

logger = logging.getLogger(__name__)

HIT_WEIGHT = 0.2
LABEL_THRESHOLD = 0.1

POSITIVE_WORDS = frozenset(
    {
        "great", "good", "excellent", "amazing", "awesome", "success",
        "successful", "win", "winning", "love", "best", "growth", "innovative",
        "happy", "proud", "excited", "thrilled", "milestone", "improved",
        "wonderful", "fantastic", "outstanding", "celebrate", "achievement",
        "breakthrough", "record", "strong",
    }
)

NEGATIVE_WORDS = frozenset(
    {
        "bad", "poor", "terrible", "awful", "failure", "fail", "failed",
        "loss", "losses", "decline", "problem", "issue", "worst", "hate",
        "disappointed", "disappointing", "layoff", "layoffs", "lawsuit",
        "outage", "breach", "delay", "delayed", "recall", "complaint",
        "broken", "crisis", "downturn", "weak",
    }
)

_WORD_RE = re.compile(r"[a-z']+")


def _label(score: float) -> str:
    if score > LABEL_THRESHOLD:
        return "positive"
    if score < -LABEL_THRESHOLD:
        return "negative"
    return "neutral"


def _lexicon_score(text: str) -> dict:
    words = _WORD_RE.findall(text.lower())
    positive = sum(1 for word in words if word in POSITIVE_WORDS)
    negative = sum(1 for word in words if word in NEGATIVE_WORDS)
    score = max(-1.0, min(1.0, (positive - negative) * HIT_WEIGHT))
    return {
        "score": round(score, 4),
        "positive_hits": positive,
        "negative_hits": negative,
        "confidence": round(min(1.0, (positive + negative) / 5), 2),
    }


def _vader_score(text: str) -> dict:
    # Lazy import
    from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

    scores = SentimentIntensityAnalyzer().polarity_scores(text)
    return {
        "score": round(scores["compound"], 4),
        "positive_hits": None,
        "negative_hits": None,
        "confidence": round(1.0 - scores["neu"], 2),
    }


def analyze_sentiment(
    text: str, scorer: Literal["lexicon", "vader"] = "lexicon"
) -> dict:
    """Score the polarity of a piece of text.

    Args:
        text: Post or comment text.
        scorer: "lexicon" (default) or "vader".

    Returns:
        Dict with score in [-1, 1], label, magnitude, confidence and,
        for the lexicon scorer, positive_hits / negative_hits.
    """
    if scorer == "vader":
        result = _vader_score(text or "")
    elif scorer == "lexicon":
        result = _lexicon_score(text or "")
    else:
        raise ValueError(f"Unknown sentiment scorer: {scorer}")

    result["label"] = _label(result["score"])
    result["magnitude"] = abs(result["score"])
    return result


def analyze_posts_sentiment(
    posts: list[Post], scorer: Literal["lexicon", "vader"] = "lexicon"
) -> dict:
    """Overall, per-post and per-day sentiment for a batch of posts."""
    if not posts:
        return {
            "overall": {"score": 0.0, "label": "neutral", "confidence": 0.0},
            "by_post": [],
            "trend": [],
        }

    by_post = []
    per_day: dict[str, list[float]] = defaultdict(list)
    for post in posts:
        result = analyze_sentiment(post.content, scorer=scorer)
        by_post.append(
            {"post_id": post.id, "score": result["score"], "label": result["label"]}
        )
        per_day[as_utc(post.published_at).date().isoformat()].append(result["score"])

    overall = sum(p["score"] for p in by_post) / len(by_post)
    confident = sum(1 for p in by_post if p["label"] != "neutral")
    return {
        "overall": {
            "score": round(overall, 4),
            "label": _label(overall),
            "confidence": round(confident / len(by_post), 2),
        },
        "by_post": by_post,
        "trend": [
            {"date": day, "score": round(sum(scores) / len(scores), 4)}
            for day, scores in sorted(per_day.items())
        ],
    }
