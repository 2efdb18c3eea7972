"""Offline product similarity recomputation.

This module regenerates the product-to-product similarity table that
item-based collaborative filtering reads at request time. It builds two kinds
of edges:

- collaborative: cosine similarity between products' user-weight vectors,
  taken from the weighted, time-decayed behavior log;
- content: attribute overlap (category, material, price bucket) between
  active catalog products.

Both are rebuilt wholesale on every run (delete by type, then reinsert), so
repeated runs over unchanged inputs produce the same table.

Scaling limit: both passes compare every pair of products, which is O(n^2)
in the number of distinct interacted products and of active products. This
is acceptable only because the job runs offline on demand; a larger catalog
needs candidate pre-filtering (e.g. per-category blocking) or approximate
nearest-neighbour search before the pairwise step.
"""

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix
from sklearn.metrics.pairwise import cosine_similarity

from jewelrec.config import RecommenderConfig
from jewelrec.metrics import MetricsService, metrics_service
from jewelrec.recommender.models import (
    BehaviorEvent,
    Product,
    ProductSimilarityEdge,
    RecommendationType,
)
from jewelrec.recommender.utils import (
    BEHAVIOR_WEIGHTS,
    DEFAULT_BEHAVIOR_WEIGHT,
    SECONDS_PER_DAY,
    as_utc,
    price_bucket,
    utc_now,
)
from jewelrec.store import BehaviorStore, CatalogStore, SimilarityStore

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class RecomputeSummary:
    """Outcome of one similarity recomputation."""

    num_events: int
    num_interacted_products: int
    num_active_products: int
    collaborative_edges: int
    content_edges: int
    duration_ms: float

    def to_dict(self) -> dict:
        return asdict(self)


def build_product_user_matrix(
    events: Sequence[BehaviorEvent],
    decay_rate: float,
    now: datetime,
) -> Tuple[csr_matrix, List[str], List[str]]:
    """Build a sparse product x user matrix of weighted, decayed interactions.

    Anonymous events are dropped. Rows and columns are ordered by sorted
    product and user IDs so the result is independent of event order.

    Args:
        events: Behavior events to aggregate.
        decay_rate: Per-day decay applied to each event.
        now: Reference time for decay.

    Returns:
        A tuple containing:
            - CSR matrix of shape (n_products, n_users)
            - Product IDs in row order
            - User IDs in column order
    """
    df = pd.DataFrame(
        [event.model_dump() for event in events if event.user_id is not None],
        columns=["user_id", "product_id", "behavior_type", "created_at"],
    )
    if df.empty:
        return csr_matrix((0, 0), dtype=np.float64), [], []

    created_at = pd.to_datetime(df["created_at"], utc=True)
    age_days = ((pd.Timestamp(as_utc(now)) - created_at).dt.total_seconds() / SECONDS_PER_DAY).clip(lower=0)
    weights = df["behavior_type"].astype(str).map(BEHAVIOR_WEIGHTS).fillna(DEFAULT_BEHAVIOR_WEIGHT)
    df["score"] = weights.to_numpy() * np.power(decay_rate, age_days.to_numpy())

    grouped = df.groupby(["product_id", "user_id"], sort=True)["score"].sum().reset_index()

    product_ids = sorted(grouped["product_id"].unique())
    user_ids = sorted(grouped["user_id"].unique())
    rows = pd.Categorical(grouped["product_id"], categories=product_ids).codes
    cols = pd.Categorical(grouped["user_id"], categories=user_ids).codes

    matrix = csr_matrix(
        (grouped["score"].to_numpy(dtype=np.float64), (rows, cols)),
        shape=(len(product_ids), len(user_ids)),
    )
    matrix.eliminate_zeros()

    logger.info(
        f"Product-user matrix: {matrix.shape[0]} products x {matrix.shape[1]} users, "
        f"{matrix.nnz} non-zero entries"
    )
    return matrix, product_ids, user_ids


def _symmetric_edges(
    product_ids: Sequence[str],
    scores: np.ndarray,
    threshold: float,
    recommendation_type: RecommendationType,
) -> List[ProductSimilarityEdge]:
    """Emit both directions for every upper-triangle pair above threshold."""
    n = len(product_ids)
    if n < 2:
        return []
    rows, cols = np.triu_indices(n, k=1)
    values = scores[rows, cols]
    keep = values > threshold

    edges = []
    for i, j, value in zip(rows[keep], cols[keep], values[keep]):
        score = float(min(value, 1.0))
        a, b = product_ids[i], product_ids[j]
        edges.append(ProductSimilarityEdge(
            product_id=a, recommended_product_id=b,
            score=score, recommendation_type=recommendation_type,
        ))
        edges.append(ProductSimilarityEdge(
            product_id=b, recommended_product_id=a,
            score=score, recommendation_type=recommendation_type,
        ))
    return edges


def compute_collaborative_edges(
    events: Sequence[BehaviorEvent],
    config: RecommenderConfig,
    now: datetime,
) -> Tuple[List[ProductSimilarityEdge], int]:
    """Item-item cosine similarity over user-weight vectors.

    Returns:
        A tuple of (edges in both directions, number of interacted products).
    """
    matrix, product_ids, _ = build_product_user_matrix(events, config.decay_rate, now)
    if len(product_ids) < 2:
        return [], len(product_ids)

    similarities = cosine_similarity(matrix)
    edges = _symmetric_edges(
        product_ids,
        similarities,
        config.collaborative_edge_threshold,
        RecommendationType.COLLABORATIVE,
    )
    return edges, len(product_ids)


def compute_content_edges(
    products: Sequence[Product],
    config: RecommenderConfig,
) -> List[ProductSimilarityEdge]:
    """Pairwise content score between active products.

    Vectorized form of ``content_pair_score``: category match, material
    match and same price bucket.
    """
    active = sorted((p for p in products if p.is_active), key=lambda p: p.id)
    if len(active) < 2:
        return []

    categories, _ = pd.factorize(pd.Series([p.category for p in active]))
    materials, _ = pd.factorize(pd.Series([p.material for p in active]))
    buckets = np.array([price_bucket(p.price) for p in active])

    scores = (
        (categories[:, None] == categories[None, :]) * config.category_match_weight
        + (materials[:, None] == materials[None, :]) * config.material_match_weight
        + (buckets[:, None] == buckets[None, :]) * config.price_bucket_weight
    )
    return _symmetric_edges(
        [p.id for p in active],
        scores,
        config.content_edge_threshold,
        RecommendationType.CONTENT,
    )


def replace_edges(
    similarity_store: SimilarityStore,
    recommendation_type: RecommendationType,
    edges: Sequence[ProductSimilarityEdge],
    batch_size: int,
) -> int:
    """Delete every edge of one type, then insert the new ones in batches."""
    removed = similarity_store.delete_by_type(recommendation_type)
    inserted = 0
    for start in range(0, len(edges), batch_size):
        inserted += similarity_store.insert_many(edges[start:start + batch_size])

    logger.info(
        f"Replaced {recommendation_type.value} edges: removed {removed}, inserted {inserted}"
    )
    return inserted


def recompute_similarities(
    behavior_store: BehaviorStore,
    catalog_store: CatalogStore,
    similarity_store: SimilarityStore,
    config: Optional[RecommenderConfig] = None,
    now: Optional[datetime] = None,
    metrics: Optional[MetricsService] = None,
) -> RecomputeSummary:
    """Regenerate the whole product similarity table.

    This is the main entry point for the offline job. It must not run
    concurrently with itself; readers may see a partially replaced table
    while it runs.

    Args:
        behavior_store: Behavior event log.
        catalog_store: Product catalog.
        similarity_store: Similarity table to overwrite.
        config: Tuning parameters. Defaults to ``RecommenderConfig()``.
        now: Reference time for the window and decay.
        metrics: Metrics sink. Defaults to the global service.

    Returns:
        Summary with event, product and edge counts.
    """
    config = config or RecommenderConfig()
    now = now or utc_now()
    metrics = metrics or metrics_service
    start_time = time.time()

    logger.info("=" * 60)
    logger.info("Starting product similarity recomputation")
    logger.info("=" * 60)

    try:
        events = behavior_store.fetch_recent_events(
            since=now - timedelta(days=config.recompute_window_days),
            limit=config.recompute_fetch_limit,
            identified_only=True,
        )
        logger.info(f"Fetched {len(events)} identified behavior events")

        collaborative, num_interacted = compute_collaborative_edges(events, config, now)

        active_products = catalog_store.list_active_products(
            limit=config.content_catalog_limit
        )
        content = compute_content_edges(active_products, config)

        collaborative_count = replace_edges(
            similarity_store,
            RecommendationType.COLLABORATIVE,
            collaborative,
            config.insert_batch_size,
        )
        content_count = replace_edges(
            similarity_store,
            RecommendationType.CONTENT,
            content,
            config.insert_batch_size,
        )
    except Exception as e:
        logger.error(f"Similarity recomputation failed: {e}", exc_info=True)
        raise

    summary = RecomputeSummary(
        num_events=len(events),
        num_interacted_products=num_interacted,
        num_active_products=len(active_products),
        collaborative_edges=collaborative_count,
        content_edges=content_count,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    metrics.record_recompute(
        {
            RecommendationType.COLLABORATIVE.value: collaborative_count,
            RecommendationType.CONTENT.value: content_count,
        }
    )

    logger.info("Similarity recomputation completed", extra=summary.to_dict())
    return summary
