"""
helpfulness.py — Community helpfulness score for a safe place.

The web client shows the same score it would compute itself from the raw
feedback, so the formula and its rounding must not drift:

    overall  = helpful / total * 100
    recent   = helpful_recent / recent * 100     (last 30 days; else overall)
    unified  = round_half_up(overall * 0.7 + recent * 0.3)

    confidence: high ≥ 10 records, medium ≥ 5, low otherwise
    top tags:   tags named by ≥ max(1, floor(total * 0.2)) records,
                most-named first, at most 6

USAGE
─────
    from safehaven.services.helpfulness import compute_place_score

    score = compute_place_score(records, now)
    # score.unified_score    → 83
    # score.confidence_level → "medium"

The score is always recomputed from the complete feedback list for the
place; there is no incremental update.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from safehaven.models.place import FeedbackRecord, PlaceScore

# ── Weights and thresholds ────────────────────────────────────────────────────

_OVERALL_WEIGHT      = 0.7
_RECENT_WEIGHT       = 0.3
_RECENT_WINDOW       = timedelta(days=30)
_TAG_SUPPORT_RATIO   = 0.2
_MAX_TOP_TAGS        = 6

_CONFIDENCE_THRESHOLDS = [
    (10, "high"),
    (5,  "medium"),
    (0,  "low"),
]


def round_half_up(value: float) -> int:
    """Math.round semantics: .5 always rounds up (Python's round() is banker's)."""
    return math.floor(value + 0.5)


def helpful_rate(records: list[FeedbackRecord]) -> float:
    if not records:
        return 0.0
    return sum(1 for r in records if r.is_helpful) / len(records) * 100


def confidence_level(total: int) -> str:
    for threshold, level in _CONFIDENCE_THRESHOLDS:
        if total >= threshold:
            return level
    return "low"


def min_tag_support(total: int) -> int:
    return max(1, math.floor(total * _TAG_SUPPORT_RATIO))


def top_tags(records: list[FeedbackRecord]) -> list[str]:
    """Tags with enough support, most-named first; ties keep first-seen order."""
    counts: Counter[str] = Counter()
    for record in records:
        counts.update(set(record.tags))

    first_seen: list[str] = []
    for record in records:
        for tag in record.tags:
            if tag not in first_seen:
                first_seen.append(tag)

    support = min_tag_support(len(records))
    kept = [t for t in first_seen if counts[t] >= support]
    kept.sort(key=lambda t: counts[t], reverse=True)
    return kept[:_MAX_TOP_TAGS]


def compute_place_score(
    feedback: Iterable[FeedbackRecord],
    now: Optional[datetime] = None,
) -> PlaceScore:
    """Recompute a PlaceScore from every feedback record of one place."""
    records = list(feedback)
    total = len(records)
    if total == 0:
        return PlaceScore()

    now = now or datetime.now(tz=timezone.utc)
    cutoff = now - _RECENT_WINDOW
    recent = [r for r in records if r.updated_at >= cutoff]

    overall_rate = helpful_rate(records)
    recent_rate = helpful_rate(recent) if recent else overall_rate
    unified = round_half_up(overall_rate * _OVERALL_WEIGHT + recent_rate * _RECENT_WEIGHT)

    helpful = sum(1 for r in records if r.is_helpful)
    return PlaceScore(
        helpful_count=helpful,
        not_helpful_count=total - helpful,
        total_feedback=total,
        unified_score=max(0, min(100, unified)),
        confidence_level=confidence_level(total),
        top_tags=top_tags(records),
        recent_feedback_count=len(recent),
    )
