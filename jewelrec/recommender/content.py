"""Content-based filtering.

Scores catalog products by attribute overlap (category, material, price
range) with a reference product.
"""

import logging
from typing import Dict, Iterable, Optional, Set

from jewelrec.config import RecommenderConfig
from jewelrec.recommender.models import Product
from jewelrec.recommender.utils import buckets_adjacent, price_bucket

# Configure module logger
logger = logging.getLogger(__name__)


def attribute_score(
    reference: Product,
    candidate: Product,
    config: RecommenderConfig,
) -> float:
    """Weighted attribute overlap used when serving recommendations.

    Same price bucket earns full price weight, an adjacent bucket half of it.
    Featured candidates get a flat bonus whether or not anything matched.
    """
    score = 0.0
    if candidate.category == reference.category:
        score += config.category_match_weight
    if candidate.material == reference.material:
        score += config.material_match_weight

    reference_bucket = price_bucket(reference.price)
    candidate_bucket = price_bucket(candidate.price)
    if candidate_bucket == reference_bucket:
        score += config.price_bucket_weight
    elif buckets_adjacent(candidate_bucket, reference_bucket):
        score += config.adjacent_bucket_weight

    if candidate.is_featured:
        score += config.featured_bonus
    return score


def content_pair_score(
    a: Product,
    b: Product,
    config: Optional[RecommenderConfig] = None,
) -> float:
    """Symmetric attribute score used for offline content edges.

    Exact matches only: category, material, same price bucket.
    """
    config = config or RecommenderConfig()
    score = 0.0
    if a.category == b.category:
        score += config.category_match_weight
    if a.material == b.material:
        score += config.material_match_weight
    if price_bucket(a.price) == price_bucket(b.price):
        score += config.price_bucket_weight
    return score


def content_based_scores(
    reference: Optional[Product],
    catalog: Iterable[Product],
    exclude: Set[str],
    config: Optional[RecommenderConfig] = None,
) -> Dict[str, float]:
    """Score active catalog products against a reference product.

    Args:
        reference: Product being viewed. None yields an empty map.
        catalog: Candidate products; inactive ones are skipped.
        exclude: Product IDs never to score. Not modified.
        config: Tuning parameters. Defaults to ``RecommenderConfig()``.

    Returns:
        Product ID to score, only for scores above zero.
    """
    if reference is None:
        return {}
    config = config or RecommenderConfig()

    scores = {}
    for candidate in catalog:
        if not candidate.is_active or candidate.id == reference.id or candidate.id in exclude:
            continue
        score = attribute_score(reference, candidate, config)
        if score > 0:
            scores[candidate.id] = score

    logger.debug(
        "Content-based filter scored products",
        extra={"product_id": reference.id, "num_scored": len(scores)},
    )
    return scores
