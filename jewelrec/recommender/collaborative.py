"""Collaborative filtering strategies.

User-based CF scores products through shoppers whose recent behavior looks
like the target shopper's. Item-based CF reads the precomputed similarity
table around the product currently being viewed.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from jewelrec.config import RecommenderConfig
from jewelrec.recommender.models import BehaviorEvent
from jewelrec.recommender.utils import (
    cosine_similarity,
    event_score,
    normalize_by_max,
    utc_now,
    weighted_profile,
)
from jewelrec.store import BehaviorStore, SimilarityStore

# Configure module logger
logger = logging.getLogger(__name__)


def _profiles_by_user(
    events: List[BehaviorEvent],
    decay_rate: float,
    now: datetime,
) -> Dict[str, Dict[str, float]]:
    """Group events by shopper and build one weighted profile each."""
    events_by_user: Dict[str, List[BehaviorEvent]] = defaultdict(list)
    for event in events:
        if event.user_id is not None:
            events_by_user[event.user_id].append(event)
    return {
        user_id: weighted_profile(user_events, decay_rate, now)
        for user_id, user_events in events_by_user.items()
    }


def find_similar_users(
    user_id: str,
    user_profile: Dict[str, float],
    behavior_store: BehaviorStore,
    since: datetime,
    config: RecommenderConfig,
    now: datetime,
) -> Dict[str, float]:
    """Find shoppers whose behavior on the same products resembles the target's.

    Only other shoppers' events on the target's products are fetched (capped
    at ``neighbor_fetch_limit``), so candidate profiles are restricted to the
    shared product set.

    Returns:
        Mapping of similar user ID to cosine similarity, for similarities
        above ``min_user_similarity``.
    """
    neighbor_events = behavior_store.fetch_events_for_products(
        product_ids=list(user_profile),
        since=since,
        limit=config.neighbor_fetch_limit,
        exclude_user_id=user_id,
    )
    candidate_profiles = _profiles_by_user(neighbor_events, config.decay_rate, now)

    similar_users = {}
    for other_id, profile in candidate_profiles.items():
        if other_id == user_id:
            continue
        similarity = cosine_similarity(user_profile, profile)
        if similarity > config.min_user_similarity:
            similar_users[other_id] = similarity

    logger.debug(
        "Similar users found",
        extra={
            "user_id": user_id,
            "num_candidates": len(candidate_profiles),
            "num_similar": len(similar_users),
        },
    )
    return similar_users


def user_based_scores(
    user_id: Optional[str],
    behavior_store: BehaviorStore,
    exclude: Set[str],
    config: Optional[RecommenderConfig] = None,
    now: Optional[datetime] = None,
) -> Dict[str, float]:
    """Score products through similar shoppers' weighted behavior.

    Adds every product the shopper interacted with in the window to
    ``exclude``. A shopper with no recent history gets an empty map; that is
    the cold-start path, not an error.

    Args:
        user_id: Target shopper. None yields an empty map.
        behavior_store: Behavior event log.
        exclude: Product IDs never to score. Mutated in place.
        config: Tuning parameters. Defaults to ``RecommenderConfig()``.
        now: Reference time for windows and decay.

    Returns:
        Product ID to score normalized into [0, 1].
    """
    if user_id is None:
        return {}
    config = config or RecommenderConfig()
    now = now or utc_now()
    since = now - timedelta(days=config.user_cf_window_days)

    user_events = behavior_store.fetch_user_events(
        user_id, since=since, limit=config.neighbor_fetch_limit
    )
    if not user_events:
        logger.debug(f"No recent history for user {user_id}, skipping user-based CF")
        return {}

    user_profile = weighted_profile(user_events, config.decay_rate, now)
    exclude.update(user_profile)

    similar_users = find_similar_users(
        user_id, user_profile, behavior_store, since, config, now
    )
    if not similar_users:
        return {}

    similar_events = behavior_store.fetch_events_for_users(
        user_ids=list(similar_users),
        since=since,
        limit=config.similar_user_fetch_limit,
    )

    scores: Dict[str, float] = defaultdict(float)
    for event in similar_events:
        if event.product_id in exclude or event.user_id not in similar_users:
            continue
        scores[event.product_id] += similar_users[event.user_id] * event_score(
            event, config.decay_rate, now
        )

    logger.debug(
        "User-based CF scored products",
        extra={"user_id": user_id, "num_scored": len(scores)},
    )
    return normalize_by_max(scores)


def item_based_scores(
    product_id: Optional[str],
    similarity_store: SimilarityStore,
    exclude: Set[str],
    config: Optional[RecommenderConfig] = None,
) -> Dict[str, float]:
    """Score products from the precomputed similarity table.

    Forward edges (reference -> candidate) count at their stored score.
    Backward edges (candidate -> reference) are treated as weaker evidence and
    scaled by ``backward_penalty``; a candidate found both ways keeps the
    larger score.

    Args:
        product_id: Product being viewed. None yields an empty map.
        similarity_store: Similarity edge table.
        exclude: Product IDs never to score. Not modified.
        config: Tuning parameters. Defaults to ``RecommenderConfig()``.

    Returns:
        Product ID to similarity score.
    """
    if product_id is None:
        return {}
    config = config or RecommenderConfig()

    scores: Dict[str, float] = {}

    for edge in similarity_store.fetch_forward(product_id, limit=config.item_cf_forward_limit):
        candidate = edge.recommended_product_id
        if candidate in exclude or candidate == product_id:
            continue
        scores[candidate] = max(scores.get(candidate, 0.0), edge.score)

    for edge in similarity_store.fetch_backward(product_id, limit=config.item_cf_backward_limit):
        candidate = edge.product_id
        if candidate in exclude or candidate == product_id:
            continue
        backward_score = edge.score * config.backward_penalty
        scores[candidate] = max(scores.get(candidate, 0.0), backward_score)

    logger.debug(
        "Item-based CF scored products",
        extra={"product_id": product_id, "num_scored": len(scores)},
    )
    return scores
