"""Tests for the offline similarity recomputation job.

Covers the product-user matrix, both edge builders, the delete-then-insert
replacement and the end-to-end ``recompute_similarities`` entry point.
"""

from unittest.mock import patch

import numpy as np
import pytest

from jewelrec.config import RecommenderConfig
from jewelrec.metrics import metrics_service
from jewelrec.recommender.models import RecommendationType
from jewelrec.recommender.train import (
    build_product_user_matrix,
    compute_collaborative_edges,
    compute_content_edges,
    recompute_similarities,
    replace_edges,
)
from jewelrec.store import (
    InMemoryBehaviorStore,
    InMemoryCatalogStore,
    InMemorySimilarityStore,
)


@pytest.fixture
def co_purchase_events(make_event):
    """Three shoppers buy A and B together; u4 only views C."""
    events = []
    for user_id in ("u1", "u2", "u3"):
        events.append(make_event(user_id, "A", "purchase"))
        events.append(make_event(user_id, "B", "purchase"))
    events.append(make_event("u4", "C", "view"))
    events.append(make_event(None, "A", "view"))
    events.append(make_event(None, "D", "view"))
    return events


@pytest.fixture
def catalog(make_product):
    return InMemoryCatalogStore([
        make_product("P1", category="nhan", material="gold_18k", price=12_000_000),
        make_product("P2", category="nhan", material="silver", price=3_000_000),
        make_product("P3", category="lac", material="gold_18k", price=80_000_000),
        make_product("P4", category="nhan", material="gold_18k", price=12_000_000, is_active=False),
    ])


def edge_map(edges):
    return {(e.product_id, e.recommended_product_id): e.score for e in edges}


# ===== Product-user matrix =====


def test_matrix_drops_anonymous_events(co_purchase_events, now):
    matrix, product_ids, user_ids = build_product_user_matrix(co_purchase_events, 0.95, now)

    assert product_ids == ["A", "B", "C"]
    assert user_ids == ["u1", "u2", "u3", "u4"]
    assert matrix.shape == (3, 4)


def test_matrix_sums_weighted_decayed_scores(make_event, now):
    events = [
        make_event("u1", "A", "purchase"),
        make_event("u1", "A", "view", days_ago=1),
    ]
    matrix, _, _ = build_product_user_matrix(events, 0.9, now)
    assert matrix[0, 0] == pytest.approx(6 + 0.9)


def test_matrix_of_empty_log_is_empty(now):
    matrix, product_ids, user_ids = build_product_user_matrix([], 0.95, now)
    assert matrix.shape == (0, 0)
    assert product_ids == [] and user_ids == []


# ===== Collaborative edges =====


def test_co_purchased_products_get_symmetric_edges(co_purchase_events, now):
    edges, num_products = compute_collaborative_edges(
        co_purchase_events, RecommenderConfig(), now
    )
    scores = edge_map(edges)

    assert num_products == 3
    assert set(scores) == {("A", "B"), ("B", "A")}
    assert scores[("A", "B")] == pytest.approx(1.0)
    assert scores[("A", "B")] == scores[("B", "A")]


def test_collaborative_edges_respect_threshold(make_event, now):
    events = [
        make_event("u1", "A", "purchase"),
        make_event("u1", "B", "view"),
        make_event("u2", "B", "purchase"),
    ]
    # A = (6, 0), B = (1, 6): cosine = 6 / (6 * sqrt(37)) ~ 0.164
    low, _ = compute_collaborative_edges(events, RecommenderConfig(), now)
    assert len(low) == 2

    strict = RecommenderConfig(collaborative_edge_threshold=0.2)
    high, _ = compute_collaborative_edges(events, strict, now)
    assert high == []


def test_single_product_yields_no_collaborative_edges(make_event, now):
    edges, num_products = compute_collaborative_edges(
        [make_event("u1", "A", "purchase")], RecommenderConfig(), now
    )
    assert edges == []
    assert num_products == 1


# ===== Content edges =====


def test_content_edges_keep_pairs_above_threshold(catalog):
    edges = compute_content_edges(catalog.list_active_products(), RecommenderConfig())
    scores = edge_map(edges)

    # P1/P2 share category only (0.4); P1/P3 share material only (0.3, not kept)
    assert scores == {("P1", "P2"): pytest.approx(0.4), ("P2", "P1"): pytest.approx(0.4)}
    assert all(e.recommendation_type == RecommendationType.CONTENT for e in edges)


def test_content_edges_skip_inactive_products(catalog):
    products = catalog.get_products(["P1", "P4"], active_only=False)
    assert compute_content_edges(products, RecommenderConfig()) == []


def test_content_edges_match_identical_products(make_product):
    products = [make_product("X"), make_product("Y")]
    scores = edge_map(compute_content_edges(products, RecommenderConfig()))
    assert scores[("X", "Y")] == pytest.approx(0.9)


# ===== Replacement =====


def test_replace_edges_only_touches_one_type(make_edge):
    store = InMemorySimilarityStore([
        make_edge("A", "B", 0.5),
        make_edge("A", "C", 0.4, RecommendationType.CONTENT),
    ])
    inserted = replace_edges(
        store, RecommendationType.COLLABORATIVE, [make_edge("A", "D", 0.7)], batch_size=100
    )

    assert inserted == 1
    assert edge_map(store.all_edges()) == {("A", "D"): 0.7, ("A", "C"): 0.4}


def test_replace_edges_inserts_in_batches(make_edge):
    store = InMemorySimilarityStore()
    edges = [make_edge("A", f"T{i}", 0.5) for i in range(5)]

    with patch.object(store, "insert_many", wraps=store.insert_many) as insert_many:
        replace_edges(store, RecommendationType.COLLABORATIVE, edges, batch_size=2)

    assert [len(call.args[0]) for call in insert_many.call_args_list] == [2, 2, 1]
    assert len(store) == 5


# ===== Full recomputation =====


def test_recompute_builds_both_edge_types(co_purchase_events, catalog, now):
    similarity = InMemorySimilarityStore()
    summary = recompute_similarities(
        InMemoryBehaviorStore(co_purchase_events), catalog, similarity, now=now
    )

    assert summary.num_events == 7
    assert summary.num_interacted_products == 3
    assert summary.num_active_products == 3
    assert summary.collaborative_edges == 2
    assert summary.content_edges == 2
    assert len(similarity.all_edges(RecommendationType.COLLABORATIVE)) == 2
    assert len(similarity.all_edges(RecommendationType.CONTENT)) == 2

    metrics = metrics_service.get_metrics()
    assert metrics["recompute_count"] == 1
    assert metrics["last_recompute_edges"] == {"collaborative": 2, "content": 2}


def test_recompute_never_writes_self_edges(co_purchase_events, catalog, now):
    similarity = InMemorySimilarityStore()
    recompute_similarities(InMemoryBehaviorStore(co_purchase_events), catalog, similarity, now=now)

    assert all(e.product_id != e.recommended_product_id for e in similarity.all_edges())


def test_recompute_is_idempotent(co_purchase_events, catalog, now):
    behavior = InMemoryBehaviorStore(co_purchase_events)
    similarity = InMemorySimilarityStore()

    recompute_similarities(behavior, catalog, similarity, now=now)
    first = edge_map(similarity.all_edges())
    recompute_similarities(behavior, catalog, similarity, now=now)
    second = edge_map(similarity.all_edges())

    assert first == second
    assert len(similarity) == len(first)


def test_recompute_replaces_stale_edges(co_purchase_events, catalog, make_edge, now):
    similarity = InMemorySimilarityStore([
        make_edge("OLD1", "OLD2", 0.9),
        make_edge("OLD1", "OLD3", 0.9, RecommendationType.CONTENT),
    ])
    recompute_similarities(InMemoryBehaviorStore(co_purchase_events), catalog, similarity, now=now)

    sources = {e.product_id for e in similarity.all_edges()}
    assert "OLD1" not in sources


def test_recompute_ignores_events_outside_window(make_event, catalog, now):
    events = [
        make_event("u1", "A", "purchase", days_ago=120),
        make_event("u1", "B", "purchase", days_ago=120),
    ]
    summary = recompute_similarities(
        InMemoryBehaviorStore(events), catalog, InMemorySimilarityStore(), now=now
    )
    assert summary.num_events == 0
    assert summary.collaborative_edges == 0


def test_recompute_uses_configured_batch_size(co_purchase_events, catalog, now):
    similarity = InMemorySimilarityStore()
    config = RecommenderConfig(insert_batch_size=1)

    with patch.object(similarity, "insert_many", wraps=similarity.insert_many) as insert_many:
        recompute_similarities(
            InMemoryBehaviorStore(co_purchase_events), catalog, similarity, config=config, now=now
        )

    assert insert_many.call_count == 4
    assert all(len(call.args[0]) == 1 for call in insert_many.call_args_list)


def test_recompute_on_empty_inputs(now):
    summary = recompute_similarities(
        InMemoryBehaviorStore(), InMemoryCatalogStore(), InMemorySimilarityStore(), now=now
    )
    assert summary.collaborative_edges == 0
    assert summary.content_edges == 0
    assert np.isfinite(summary.duration_ms)
