"""Shared pytest fixtures for the JewelRec test suite.

Fixtures build in-memory stores around a fixed reference time so decay and
window arithmetic is reproducible.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from jewelrec.metrics import metrics_service
from jewelrec.recommender.models import (
    BehaviorEvent,
    Product,
    ProductSimilarityEdge,
    RecommendationType,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty metrics."""
    metrics_service.reset()
    yield
    metrics_service.reset()


@pytest.fixture
def now():
    """Fixed reference time."""
    return NOW


@pytest.fixture
def make_event():
    """Factory for behavior events relative to NOW."""

    def _make(user_id, product_id, behavior_type="view", days_ago=0.0):
        return BehaviorEvent(
            user_id=user_id,
            product_id=product_id,
            behavior_type=behavior_type,
            created_at=NOW - timedelta(days=days_ago),
        )

    return _make


@pytest.fixture
def make_product():
    """Factory for catalog products with jewellery defaults."""

    def _make(
        product_id,
        category="nhan",
        material="gold_18k",
        price=12_000_000,
        is_featured=False,
        is_active=True,
    ):
        return Product(
            id=product_id,
            name=f"Product {product_id}",
            slug=f"product-{product_id}",
            category=category,
            material=material,
            price=Decimal(price),
            is_featured=is_featured,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def make_edge():
    """Factory for similarity edges."""

    def _make(source, target, score, recommendation_type=RecommendationType.COLLABORATIVE):
        return ProductSimilarityEdge(
            product_id=source,
            recommended_product_id=target,
            score=score,
            recommendation_type=recommendation_type,
        )

    return _make
