"""Hybrid recommendation module.

Runs every applicable scoring strategy for a request, fuses their scores with
fixed strategy weights, ranks the active candidates and falls back to plain
catalog products when no strategy produced an active candidate.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from jewelrec.config import (
    CONTENT,
    FEATURED_BOOST,
    ITEM_CF,
    TRENDING,
    USER_CF,
    RecommenderConfig,
)
from jewelrec.exceptions import RecommendationError
from jewelrec.metrics import MetricsService, metrics_service
from jewelrec.recommender.collaborative import item_based_scores, user_based_scores
from jewelrec.recommender.content import content_based_scores
from jewelrec.recommender.models import CandidateScore, Product
from jewelrec.recommender.trending import trending_scores
from jewelrec.recommender.utils import utc_now
from jewelrec.store import BehaviorStore, CatalogStore, SimilarityStore

# Configure module logger
logger = logging.getLogger(__name__)

ScoreMap = Dict[str, float]


def fuse_scores(
    strategy_scores: Mapping[str, Mapping[str, float]],
    weights: Mapping[str, float],
) -> Dict[str, CandidateScore]:
    """Merge per-strategy score maps into one accumulator.

    Each candidate's score is the sum of ``raw_score * weight`` over the
    strategies that scored it; the contributing strategy names are kept for
    debugging.
    """
    accumulated: Dict[str, CandidateScore] = {}
    for strategy, scores in strategy_scores.items():
        weight = weights.get(strategy, 0.0)
        for product_id, raw_score in scores.items():
            if product_id not in accumulated:
                accumulated[product_id] = CandidateScore()
            accumulated[product_id].add(strategy, raw_score * weight)
    return accumulated


def apply_featured_boost(
    accumulated: Dict[str, CandidateScore],
    featured_ids: Set[str],
    weight: float,
) -> None:
    """Add the static featured boost to candidates already in the accumulator.

    The boost never introduces a candidate on its own.
    """
    for product_id in featured_ids:
        if product_id in accumulated:
            accumulated[product_id].add(FEATURED_BOOST, weight)


def rank_candidates(
    accumulated: Mapping[str, CandidateScore],
    exclude: Set[str],
    limit: int,
) -> List[Tuple[str, float]]:
    """Sort candidates by score descending, ties by product ID, and truncate.

    Excluded IDs are dropped here even though strategies already skip them.
    """
    ranked = sorted(
        (
            (product_id, candidate.score)
            for product_id, candidate in accumulated.items()
            if product_id not in exclude
        ),
        key=lambda item: (-item[1], item[0]),
    )
    return ranked[:limit]


def order_products(ranked_ids: List[str], products: List[Product]) -> List[Product]:
    """Return products in ranked order, dropping inactive or missing ones."""
    by_id = {product.id: product for product in products if product.is_active}
    return [by_id[product_id] for product_id in ranked_ids if product_id in by_id]


class HybridRecommender:
    """Combines collaborative, content and trending recommendations.

    Stateless per request: every call builds its own exclusion set and score
    maps, so one instance can serve concurrent requests. Strategies fan out to
    a shared thread pool and are joined before fusion; a strategy that raises
    or exceeds ``strategy_timeout_seconds`` contributes nothing.
    """

    def __init__(
        self,
        behavior_store: BehaviorStore,
        catalog_store: CatalogStore,
        similarity_store: SimilarityStore,
        config: Optional[RecommenderConfig] = None,
        metrics: Optional[MetricsService] = None,
    ):
        """Initialize the recommender."""
        self.behavior_store = behavior_store
        self.catalog_store = catalog_store
        self.similarity_store = similarity_store
        self.config = config or RecommenderConfig()
        self.metrics = metrics or metrics_service
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="jewelrec-strategy",
        )

        logger.info(
            "Initialized HybridRecommender: "
            + ", ".join(
                f"{name} weight={weight:.2f}"
                for name, weight in self.config.strategy_weights.items()
            )
        )

    def close(self) -> None:
        """Shut down the strategy thread pool."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "HybridRecommender":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _content_scores(
        self, product_id: str, exclude: Set[str]
    ) -> ScoreMap:
        reference = self.catalog_store.get_product(product_id)
        if reference is None:
            logger.debug(f"Reference product {product_id} not in catalog")
            return {}
        catalog = self.catalog_store.list_active_products(
            limit=self.config.content_catalog_limit
        )
        return content_based_scores(reference, catalog, exclude, self.config)

    def _strategy_tasks(
        self,
        user_id: Optional[str],
        product_id: Optional[str],
        exclude: Set[str],
        now: datetime,
    ) -> Tuple[Dict[str, Callable[[], ScoreMap]], Set[str]]:
        """Build one task per applicable strategy.

        Each task gets its own copy of the exclusion set. The user-based CF
        copy is returned too, since that strategy adds the shopper's own
        products to it.
        """
        config = self.config
        user_exclude = set(exclude)
        tasks: Dict[str, Callable[[], ScoreMap]] = {}

        if user_id is not None:
            tasks[USER_CF] = lambda: user_based_scores(
                user_id, self.behavior_store, user_exclude, config, now
            )
        if product_id is not None:
            item_exclude = set(exclude)
            content_exclude = set(exclude)
            tasks[ITEM_CF] = lambda: item_based_scores(
                product_id, self.similarity_store, item_exclude, config
            )
            tasks[CONTENT] = lambda: self._content_scores(product_id, content_exclude)

        trending_exclude = set(exclude)
        tasks[TRENDING] = lambda: trending_scores(
            self.behavior_store, trending_exclude, config, now
        )
        return tasks, user_exclude

    def _run_strategies(
        self, tasks: Dict[str, Callable[[], ScoreMap]]
    ) -> Tuple[Dict[str, ScoreMap], List[str]]:
        """Fan out strategy tasks and join them, isolating failures."""
        futures = {name: self._executor.submit(task) for name, task in tasks.items()}
        deadline = time.monotonic() + self.config.strategy_timeout_seconds

        results: Dict[str, ScoreMap] = {}
        failed: List[str] = []
        for name, future in futures.items():
            remaining = max(deadline - time.monotonic(), 0.0)
            try:
                results[name] = future.result(timeout=remaining)
            except FutureTimeoutError:
                future.cancel()
                logger.warning(
                    f"Strategy {name} timed out, continuing without it",
                    extra={"strategy": name},
                )
                self.metrics.record_strategy_failure(name, timed_out=True)
                results[name] = {}
                failed.append(name)
            except Exception as e:
                logger.warning(
                    f"Strategy {name} failed, continuing without it: {e}",
                    extra={"strategy": name, "error_type": type(e).__name__},
                    exc_info=True,
                )
                self.metrics.record_strategy_failure(name)
                results[name] = {}
                failed.append(name)
        return results, failed

    def _active_candidates(self, candidate_ids: List[str]) -> Dict[str, Product]:
        """Look up scored candidates, keeping only active products."""
        if not candidate_ids:
            return {}
        products = self.catalog_store.get_products(candidate_ids, active_only=True)
        return {product.id: product for product in products if product.is_active}

    def fallback_ids(self, product_id: Optional[str], limit: int) -> List[str]:
        """Active products excluding the reference product, featured first.

        Within each group products are ordered by ID, so identical catalogs
        always give the same list.
        """
        exclude_ids = [product_id] if product_id is not None else []
        featured = self.catalog_store.list_active_products(
            limit=limit, exclude_ids=exclude_ids, featured_only=True
        )
        ids = [product.id for product in featured]
        if len(ids) < limit:
            others = self.catalog_store.list_active_products(
                limit=limit - len(ids), exclude_ids=exclude_ids + ids
            )
            ids.extend(product.id for product in others)
        return ids[:limit]

    def recommend(
        self,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        return_scores: bool = False,
    ) -> List[Product] | Tuple[List[Product], Dict]:
        """Get ranked recommendations for a shopper and/or a viewed product.

        Args:
            user_id: Shopper to personalize for, if signed in.
            product_id: Product currently being viewed; never recommended back.
            limit: Maximum number of products to return.
            now: Reference time for windows and decay. Defaults to now (UTC).
            return_scores: Also return a score breakdown for debugging.

        Returns:
            Active products in rank order, or ``(products, breakdown)`` when
            ``return_scores`` is set.

        Raises:
            RecommendationError: If fusion, ranking or the final catalog
                lookup fails. Individual strategy failures never raise.
        """
        start_time = time.time()
        limit = self.config.default_limit if limit is None else limit
        now = now or utc_now()

        logger.info(
            "Generating hybrid recommendations",
            extra={"user_id": user_id, "product_id": product_id, "limit": limit},
        )

        if limit <= 0:
            return ([], {"method": "empty"}) if return_scores else []

        try:
            exclude: Set[str] = {product_id} if product_id is not None else set()
            tasks, user_exclude = self._strategy_tasks(user_id, product_id, exclude, now)
            strategy_scores, failed = self._run_strategies(tasks)
            # A timed-out user-based CF task may still be writing its copy
            if USER_CF in tasks and USER_CF not in failed:
                exclude |= user_exclude

            accumulated = fuse_scores(strategy_scores, self.config.strategy_weights)
            candidates = self._active_candidates(list(accumulated))
            accumulated = {
                pid: candidate
                for pid, candidate in accumulated.items()
                if pid in candidates
            }
            apply_featured_boost(
                accumulated,
                {pid for pid, product in candidates.items() if product.is_featured},
                self.config.featured_boost_weight,
            )

            ranked = rank_candidates(accumulated, exclude, limit)
            method = "hybrid"
            if ranked:
                ranked_ids = [pid for pid, _ in ranked]
                products = order_products(ranked_ids, list(candidates.values()))
            else:
                method = "fallback"
                self.metrics.record_fallback()
                ranked_ids = self.fallback_ids(product_id, limit)
                logger.info(
                    "No active scored candidates, using fallback",
                    extra={"user_id": user_id, "product_id": product_id},
                )
                products = order_products(
                    ranked_ids,
                    self.catalog_store.get_products(ranked_ids, active_only=True),
                )
        except Exception as e:
            logger.error(
                "Recommendation generation failed",
                extra={
                    "user_id": user_id,
                    "product_id": product_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise RecommendationError(user_id, product_id, e) from e

        total_ms = (time.time() - start_time) * 1000
        self.metrics.record_request(total_ms)
        logger.info(
            "Recommendations generated",
            extra={
                "user_id": user_id,
                "product_id": product_id,
                "method": method,
                "num_recommendations": len(products),
                "failed_strategies": failed,
                "total_time_ms": round(total_ms, 2),
            },
        )

        if return_scores:
            breakdown = {
                "method": method,
                "strategy_scores": {
                    name: {pid: scores[pid] for pid in ranked_ids if pid in scores}
                    for name, scores in strategy_scores.items()
                },
                "hybrid_scores": {
                    pid: accumulated[pid].score for pid in ranked_ids if pid in accumulated
                },
                "strategies": {
                    pid: sorted(accumulated[pid].strategies)
                    for pid in ranked_ids
                    if pid in accumulated
                },
                "failed_strategies": failed,
                "weights": self.config.strategy_weights,
            }
            return products, breakdown

        return products


def create_hybrid_recommender(
    behavior_store: BehaviorStore,
    catalog_store: CatalogStore,
    similarity_store: SimilarityStore,
    config: Optional[RecommenderConfig] = None,
) -> HybridRecommender:
    """Create a hybrid recommender, reading config from the environment if not given."""
    if config is None:
        config = RecommenderConfig.from_env()

    return HybridRecommender(
        behavior_store=behavior_store,
        catalog_store=catalog_store,
        similarity_store=similarity_store,
        config=config,
    )
