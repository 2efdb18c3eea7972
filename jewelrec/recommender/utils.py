"""Utility functions for the recommendation engine.

This module provides the building blocks shared by every scoring strategy:
recency decay, behavior weighting, cosine similarity between sparse weighted
profiles, price bucketing and score normalization.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Hashable, Iterable, Mapping, Optional, Union

import numpy as np

from jewelrec.recommender.models import BehaviorEvent

# Configure module logger
logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# Relative strength of each interaction kind
BEHAVIOR_WEIGHTS: Dict[str, float] = {
    "view": 1.0,
    "wishlist": 3.0,
    "add_to_cart": 4.0,
    "purchase": 6.0,
}
DEFAULT_BEHAVIOR_WEIGHT = 1.0

# Upper bounds (exclusive) of price buckets 0..3 in VND; bucket 4 is open-ended
PRICE_BUCKET_BREAKPOINTS = (1_000_000, 5_000_000, 15_000_000, 50_000_000)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so aware and naive values compare."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def days_between(now: datetime, event_time: datetime) -> float:
    """Fractional days from ``event_time`` to ``now``, never negative."""
    delta = as_utc(now) - as_utc(event_time)
    return max(delta.total_seconds() / SECONDS_PER_DAY, 0.0)


def time_decay(
    event_time: datetime,
    decay_rate: float,
    now: Optional[datetime] = None,
) -> float:
    """Convert an event timestamp into a recency multiplier.

    Computes ``decay_rate ** age_in_days`` with a fractional age, so a view
    from 36 hours ago at rate 0.9 weighs ``0.9 ** 1.5``. Events stamped in the
    future count as age 0.

    Args:
        event_time: When the event happened.
        decay_rate: Per-day multiplier in (0, 1].
        now: Reference time. Defaults to the current UTC time.

    Returns:
        Multiplier in (0, 1]; 1.0 at age 0, non-increasing with age.

    Raises:
        ValueError: If decay_rate is outside (0, 1].
    """
    if not 0 < decay_rate <= 1:
        raise ValueError(f"decay_rate must be in (0, 1], got {decay_rate}")
    if now is None:
        now = utc_now()
    return float(decay_rate ** days_between(now, event_time))


def behavior_weight(behavior_type: str) -> float:
    """Weight of an interaction kind. Unknown kinds weigh like a view."""
    return BEHAVIOR_WEIGHTS.get(str(behavior_type), DEFAULT_BEHAVIOR_WEIGHT)


def event_score(event: BehaviorEvent, decay_rate: float, now: datetime) -> float:
    """Behavior weight times recency decay for a single event."""
    return behavior_weight(event.behavior_type) * time_decay(
        event.created_at, decay_rate, now
    )


def weighted_profile(
    events: Iterable[BehaviorEvent],
    decay_rate: float,
    now: datetime,
) -> Dict[str, float]:
    """Build a product -> sum(weight x decay) profile from events."""
    profile: Dict[str, float] = defaultdict(float)
    for event in events:
        profile[event.product_id] += event_score(event, decay_rate, now)
    return dict(profile)


def cosine_similarity(
    a: Mapping[Hashable, float],
    b: Mapping[Hashable, float],
) -> float:
    """Cosine similarity between two sparse weighted maps.

    Keys missing from one map count as zero. The result is symmetric, 0.0
    when either map is empty or all-zero, and 1.0 for identical non-zero maps.

    Args:
        a: First weighted map (e.g. product -> score).
        b: Second weighted map.

    Returns:
        Similarity in [0, 1] for non-negative weights.
    """
    if not a or not b:
        return 0.0

    keys = sorted(set(a) | set(b), key=str)
    vec_a = np.array([a.get(key, 0.0) for key in keys], dtype=np.float64)
    vec_b = np.array([b.get(key, 0.0) for key in keys], dtype=np.float64)

    norm_product = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if norm_product == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / norm_product)
    # Rounding can push identical vectors a hair past 1
    return min(max(similarity, 0.0), 1.0)


def price_bucket(price: Union[Decimal, float, int]) -> int:
    """Map a price to its ordinal bucket 0..4.

    Buckets: <1M, <5M, <15M, <50M, >=50M.
    """
    value = Decimal(str(price))
    for bucket, upper in enumerate(PRICE_BUCKET_BREAKPOINTS):
        if value < upper:
            return bucket
    return len(PRICE_BUCKET_BREAKPOINTS)


def buckets_adjacent(a: int, b: int) -> bool:
    """True if two price buckets differ by exactly one."""
    return abs(a - b) == 1


def normalize_by_max(scores: Mapping[str, float]) -> Dict[str, float]:
    """Scale scores by the maximum observed score, floored at 1.

    Flooring the denominator keeps division safe and leaves already small
    score maps unscaled.
    """
    if not scores:
        return {}
    denominator = max(max(scores.values()), 1.0)
    return {pid: score / denominator for pid, score in scores.items()}
