"""Engine boundary used by the surrounding storefront.

``RecommendationService`` is what the storefront's transport layer calls: it
serves ranked recommendations, runs the privileged similarity recomputation,
records shopper behavior and answers the "recently viewed" shelf.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import List, Optional

from jewelrec.config import RecommenderConfig
from jewelrec.exceptions import (
    RecommendationError,
    RecomputeInProgressError,
    UnauthorizedError,
)
from jewelrec.recommender.hybrid import HybridRecommender
from jewelrec.recommender.models import BehaviorEvent, Caller, Product
from jewelrec.recommender.train import RecomputeSummary, recompute_similarities
from jewelrec.recommender.utils import utc_now
from jewelrec.store import (
    BehaviorStore,
    CatalogStore,
    InMemorySimilarityStore,
    SimilarityStore,
    check_similarity_table_exists,
    load_behavior_csv,
    load_catalog_csv,
    load_similarity_table,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Most recent views scanned when building the recently-viewed shelf
VIEW_HISTORY_FETCH_LIMIT = 200
VIEW_HISTORY_WINDOW_DAYS = 365


class RecommendationService:
    """Facade over the hybrid recommender and the offline similarity job."""

    def __init__(
        self,
        behavior_store: BehaviorStore,
        catalog_store: CatalogStore,
        similarity_store: SimilarityStore,
        config: Optional[RecommenderConfig] = None,
    ):
        self.behavior_store = behavior_store
        self.catalog_store = catalog_store
        self.similarity_store = similarity_store
        self.config = config or RecommenderConfig()
        self.recommender = HybridRecommender(
            behavior_store=behavior_store,
            catalog_store=catalog_store,
            similarity_store=similarity_store,
            config=self.config,
        )
        # Serializes recomputations; recommendation reads never take it
        self._recompute_lock = threading.Lock()

    def close(self) -> None:
        self.recommender.close()

    def get_recommendations(
        self,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Product]:
        """Ranked recommendations for a shopper and/or a viewed product.

        Raises:
            RecommendationError: If ranking itself fails.
        """
        return self.recommender.recommend(
            user_id=user_id, product_id=product_id, limit=limit, now=now
        )

    def get_recommendations_or_fallback(
        self,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Product]:
        """Recommendations that degrade instead of failing.

        An empty engine result falls back to featured products; an engine
        error falls back to any active products. Both exclude the viewed
        product.
        Only a failing catalog can make this raise.
        """
        limit = self.config.default_limit if limit is None else limit
        exclude_ids = [product_id] if product_id is not None else []
        try:
            products = self.get_recommendations(user_id, product_id, limit, now)
        except RecommendationError as e:
            logger.warning(
                f"Recommendations failed, falling back to active products: {e.message}",
                extra={"user_id": user_id, "product_id": product_id},
            )
            return self.catalog_store.list_active_products(
                limit=limit, exclude_ids=exclude_ids
            )

        if products:
            return products
        return self.catalog_store.list_active_products(
            limit=limit, exclude_ids=exclude_ids, featured_only=True
        )

    def update_recommendations(
        self,
        caller: Caller,
        now: Optional[datetime] = None,
        blocking: bool = True,
    ) -> RecomputeSummary:
        """Rebuild the product similarity table.

        Idempotent: rerunning over unchanged behavior data rewrites the same
        table. Two recomputations never interleave; with ``blocking=False`` a
        call that finds one running raises instead of waiting.

        Raises:
            UnauthorizedError: If the caller is not privileged.
            RecomputeInProgressError: If ``blocking`` is False and another
                recomputation holds the lock.
        """
        if not caller.is_privileged:
            logger.warning(
                "Rejected similarity recomputation",
                extra={"caller_id": caller.user_id},
            )
            raise UnauthorizedError("update recommendations", caller.user_id)

        if not self._recompute_lock.acquire(blocking=blocking):
            raise RecomputeInProgressError()
        try:
            logger.info(
                "Similarity recomputation triggered",
                extra={"caller_id": caller.user_id},
            )
            return recompute_similarities(
                self.behavior_store,
                self.catalog_store,
                self.similarity_store,
                config=self.config,
                now=now,
            )
        finally:
            self._recompute_lock.release()

    def record_behavior(
        self,
        user_id: Optional[str],
        product_id: str,
        behavior_type: str,
        now: Optional[datetime] = None,
    ) -> BehaviorEvent:
        """Append a shopper interaction to the behavior log.

        Anonymous events (``user_id=None``) are accepted; they feed trending
        but not collaborative filtering. Unknown behavior types are stored
        as-is.
        """
        event = BehaviorEvent(
            user_id=user_id,
            product_id=product_id,
            behavior_type=behavior_type,
            created_at=now or utc_now(),
        )
        self.behavior_store.append(event)
        logger.debug(
            "Recorded behavior",
            extra={
                "user_id": user_id,
                "product_id": product_id,
                "behavior_type": behavior_type,
            },
        )
        return event

    def recently_viewed(
        self,
        user_id: str,
        limit: int = 8,
        now: Optional[datetime] = None,
    ) -> List[Product]:
        """Distinct products the shopper viewed most recently, newest first.

        Inactive products are skipped.
        """
        now = now or utc_now()
        events = self.behavior_store.fetch_user_events(
            user_id,
            since=now - timedelta(days=VIEW_HISTORY_WINDOW_DAYS),
            limit=VIEW_HISTORY_FETCH_LIMIT,
        )

        viewed_ids: List[str] = []
        for event in events:
            if event.behavior_type == "view" and event.product_id not in viewed_ids:
                viewed_ids.append(event.product_id)

        products = {
            p.id: p for p in self.catalog_store.get_products(viewed_ids, active_only=True)
        }
        return [products[pid] for pid in viewed_ids if pid in products][:limit]


def build_service_from_csv(
    events_csv: str,
    catalog_csv: str,
    similarity_dir: Optional[str] = None,
    config: Optional[RecommenderConfig] = None,
) -> RecommendationService:
    """Wire a service from CSV exports and an optional saved similarity table.

    Args:
        events_csv: Behavior events CSV (see ``load_behavior_csv``).
        catalog_csv: Product catalog CSV (see ``load_catalog_csv``).
        similarity_dir: Directory holding a table saved with
            ``save_similarity_table``. An empty table is used when it is
            None or holds no saved table.
        config: Tuning parameters. Read from the environment if None.

    Raises:
        FileNotFoundError: If a CSV file is missing.
        ValueError: If a CSV is missing required columns.
    """
    behavior_store = load_behavior_csv(events_csv)
    catalog_store = load_catalog_csv(catalog_csv)

    if similarity_dir is not None and check_similarity_table_exists(similarity_dir):
        similarity_store = load_similarity_table(similarity_dir)
    else:
        logger.warning("No saved similarity table, starting with an empty one")
        similarity_store = InMemorySimilarityStore()

    return RecommendationService(
        behavior_store=behavior_store,
        catalog_store=catalog_store,
        similarity_store=similarity_store,
        config=config or RecommenderConfig.from_env(),
    )
