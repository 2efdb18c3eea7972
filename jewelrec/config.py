"""Tuning parameters for the recommendation engine.

Every weight, window, fetch cap and threshold the engine uses lives on
``RecommenderConfig`` so a deployment can retune it without code changes.
The defaults are ad hoc tuning constants taken from the storefront that the
engine serves, not derived values.
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Dict

# Configure module logger
logger = logging.getLogger(__name__)

ENV_PREFIX = "JEWELREC_"

# Strategy names, highest priority first
USER_CF = "user_cf"
ITEM_CF = "item_cf"
CONTENT = "content"
TRENDING = "trending"
FEATURED_BOOST = "featured_boost"
STRATEGY_PRIORITY = (USER_CF, ITEM_CF, CONTENT, TRENDING, FEATURED_BOOST)


@dataclass
class RecommenderConfig:
    """Configuration for scoring, fusion and offline recomputation."""

    # Fusion weights
    user_cf_weight: float = 0.35
    item_cf_weight: float = 0.25
    content_weight: float = 0.20
    trending_weight: float = 0.15
    featured_boost_weight: float = 0.05

    # Time decay per day
    decay_rate: float = 0.95
    trending_decay_rate: float = 0.9

    # Look-back windows in days
    user_cf_window_days: int = 30
    trending_window_days: int = 7
    recompute_window_days: int = 90

    # Row caps on every fetch
    neighbor_fetch_limit: int = 1000
    similar_user_fetch_limit: int = 2000
    trending_fetch_limit: int = 500
    recompute_fetch_limit: int = 20000
    item_cf_forward_limit: int = 20
    item_cf_backward_limit: int = 10
    content_catalog_limit: int = 5000

    # Thresholds
    min_user_similarity: float = 0.1
    collaborative_edge_threshold: float = 0.05
    content_edge_threshold: float = 0.3
    backward_penalty: float = 0.8

    # Content attribute weights
    category_match_weight: float = 0.4
    material_match_weight: float = 0.3
    price_bucket_weight: float = 0.2
    adjacent_bucket_weight: float = 0.1
    featured_bonus: float = 0.1

    # Execution
    insert_batch_size: int = 100
    max_workers: int = 4
    strategy_timeout_seconds: float = 5.0
    default_limit: int = 8

    def __post_init__(self):
        weights = self.strategy_weights
        if any(weight < 0 for weight in weights.values()):
            raise ValueError(f"Strategy weights must be non-negative: {weights}")

        total = sum(weights.values())
        if total > 1.0 + 1e-9:
            raise ValueError(f"Strategy weights must sum to at most 1, got {total:.4f}")

        ordered = [weights[name] for name in STRATEGY_PRIORITY]
        if any(higher <= lower for higher, lower in zip(ordered, ordered[1:])):
            raise ValueError(
                "Strategy weights must be strictly decreasing in the order "
                f"{' > '.join(STRATEGY_PRIORITY)}, got {ordered}"
            )

        for name in ("decay_rate", "trending_decay_rate"):
            rate = getattr(self, name)
            if not 0 < rate <= 1:
                raise ValueError(f"{name} must be in (0, 1], got {rate}")

        for f in fields(self):
            if f.name.endswith(("_limit", "_days", "_batch_size")) or f.name == "max_workers":
                if getattr(self, f.name) <= 0:
                    raise ValueError(f"{f.name} must be positive, got {getattr(self, f.name)}")

        if not 0 <= self.backward_penalty <= 1:
            raise ValueError(f"backward_penalty must be in [0, 1], got {self.backward_penalty}")

    @property
    def strategy_weights(self) -> Dict[str, float]:
        """Fusion weight for each strategy name."""
        return {
            USER_CF: self.user_cf_weight,
            ITEM_CF: self.item_cf_weight,
            CONTENT: self.content_weight,
            TRENDING: self.trending_weight,
            FEATURED_BOOST: self.featured_boost_weight,
        }

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "RecommenderConfig":
        """Build a config, overriding defaults from environment variables.

        Each field can be set through ``<prefix><FIELD_NAME>``, e.g.
        ``JEWELREC_TRENDING_WINDOW_DAYS=14``.

        Raises:
            ValueError: If a variable cannot be parsed or the resulting
                configuration is invalid.
        """
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            caster = type(f.default)
            try:
                overrides[f.name] = caster(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {prefix}{f.name.upper()}: {raw!r}") from e

        if overrides:
            logger.info(f"Config overrides from environment: {sorted(overrides)}")

        return cls(**overrides)
