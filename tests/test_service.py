"""Tests for the service boundary: recomputation access, behavior recording
and the degrade-instead-of-fail recommendation path."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from jewelrec.exceptions import (
    DataFetchError,
    RecommendationError,
    RecomputeInProgressError,
    UnauthorizedError,
)
from jewelrec.recommender.models import Caller, RecommendationType
from jewelrec.service import RecommendationService, build_service_from_csv
from jewelrec.store import (
    InMemoryBehaviorStore,
    InMemoryCatalogStore,
    InMemorySimilarityStore,
    save_similarity_table,
)

ADMIN = Caller(user_id="admin-1", roles={"admin"})
SHOPPER = Caller(user_id="u1", roles={"customer"})


@pytest.fixture
def service(make_event, make_product):
    events = []
    for user_id in ("u1", "u2", "u3"):
        events.append(make_event(user_id, "P1", "purchase"))
        events.append(make_event(user_id, "P2", "purchase"))
    catalog = InMemoryCatalogStore([
        make_product("P1", category="nhan", material="gold_18k", price=12_000_000),
        make_product("P2", category="lac", material="pearl", price=90_000_000),
        make_product("P3", category="bong_tai", material="silver", price=500_000, is_featured=True),
        make_product("P4", category="day_chuyen", material="platinum", price=30_000_000),
    ])
    svc = RecommendationService(
        InMemoryBehaviorStore(events), catalog, InMemorySimilarityStore()
    )
    yield svc
    svc.close()


# ===== Recomputation =====


def test_shopper_cannot_trigger_recompute(service, now):
    with pytest.raises(UnauthorizedError) as exc_info:
        service.update_recommendations(SHOPPER, now=now)

    assert exc_info.value.status_code == 403
    assert exc_info.value.details["caller_id"] == "u1"
    assert len(service.similarity_store) == 0


def test_anonymous_caller_is_rejected(service, now):
    with pytest.raises(UnauthorizedError):
        service.update_recommendations(Caller(), now=now)


def test_admin_recompute_feeds_item_based_recommendations(service, now):
    summary = service.update_recommendations(ADMIN, now=now)

    assert summary.collaborative_edges == 2
    edges = service.similarity_store.all_edges(RecommendationType.COLLABORATIVE)
    assert {(e.product_id, e.recommended_product_id) for e in edges} == {
        ("P1", "P2"),
        ("P2", "P1"),
    }

    products = service.get_recommendations(product_id="P1", limit=3, now=now)
    assert products[0].id == "P2"
    assert "P1" not in [p.id for p in products]


def test_non_blocking_recompute_refuses_to_overlap(service, now):
    assert service._recompute_lock.acquire()
    try:
        with pytest.raises(RecomputeInProgressError) as exc_info:
            service.update_recommendations(ADMIN, now=now, blocking=False)
    finally:
        service._recompute_lock.release()

    assert exc_info.value.status_code == 409
    # The lock is free again afterwards
    service.update_recommendations(ADMIN, now=now, blocking=False)


def test_recompute_releases_lock_on_failure(service, now):
    with patch(
        "jewelrec.service.recompute_similarities",
        side_effect=DataFetchError("behavior_events", ConnectionError("down")),
    ):
        with pytest.raises(DataFetchError):
            service.update_recommendations(ADMIN, now=now)

    assert not service._recompute_lock.locked()


# ===== Behavior recording =====


def test_recorded_behavior_reaches_recently_viewed(service, now):
    service.record_behavior("u7", "P1", "view", now=now - timedelta(minutes=30))
    service.record_behavior("u7", "P3", "view", now=now - timedelta(minutes=20))
    service.record_behavior("u7", "P2", "purchase", now=now - timedelta(minutes=15))
    service.record_behavior("u7", "P1", "view", now=now - timedelta(minutes=10))

    viewed = service.recently_viewed("u7", now=now)
    assert [p.id for p in viewed] == ["P1", "P3"]
    assert [p.id for p in service.recently_viewed("u7", limit=1, now=now)] == ["P1"]


def test_recently_viewed_skips_inactive_products(service, make_product, now):
    service.record_behavior("u7", "P4", "view", now=now)
    service.catalog_store.upsert(make_product("P4", is_active=False))

    assert service.recently_viewed("u7", now=now) == []


def test_anonymous_behavior_feeds_trending_only(service, now):
    event = service.record_behavior(None, "P4", "add_to_cart", now=now)

    assert event.user_id is None
    assert event.created_at == now
    products = service.get_recommendations(limit=8, now=now)
    assert "P4" in [p.id for p in products]


def test_recently_viewed_for_unknown_user(service, now):
    assert service.recently_viewed("nobody", now=now) == []


# ===== Degrading recommendations =====


def test_empty_result_falls_back_to_featured(service, now):
    with patch.object(service.recommender, "recommend", return_value=[]):
        products = service.get_recommendations_or_fallback(product_id="P1", limit=4, now=now)

    assert [p.id for p in products] == ["P3"]


def test_featured_fallback_excludes_viewed_product(service, now):
    with patch.object(service.recommender, "recommend", return_value=[]):
        products = service.get_recommendations_or_fallback(product_id="P3", limit=4, now=now)

    assert products == []


def test_engine_error_falls_back_to_active_products(service, now):
    error = RecommendationError("u1", None, RuntimeError("boom"))
    with patch.object(service.recommender, "recommend", side_effect=error):
        products = service.get_recommendations_or_fallback(user_id="u1", limit=3, now=now)

    assert [p.id for p in products] == ["P1", "P2", "P3"]


def test_engine_error_fallback_excludes_viewed_product(service, now):
    error = RecommendationError(None, "P1", RuntimeError("boom"))
    with patch.object(service.recommender, "recommend", side_effect=error):
        products = service.get_recommendations_or_fallback(product_id="P1", limit=3, now=now)

    assert [p.id for p in products] == ["P2", "P3", "P4"]


def test_successful_result_is_returned_unchanged(service, now):
    direct = service.get_recommendations(user_id="u1", limit=3, now=now)
    degraded = service.get_recommendations_or_fallback(user_id="u1", limit=3, now=now)
    assert [p.id for p in degraded] == [p.id for p in direct]


# ===== Wiring from files =====


@pytest.fixture
def csv_files(tmp_path):
    events_csv = tmp_path / "behaviors.csv"
    events_csv.write_text(
        "user_id,product_id,behavior_type,created_at\n"
        "u1,P1,purchase,2025-06-01T10:00:00Z\n"
        "u1,P2,purchase,2025-06-01T10:05:00Z\n"
        "u2,P1,purchase,2025-06-01T09:00:00Z\n"
        "u2,P2,view,2025-06-01T09:30:00Z\n"
    )
    catalog_csv = tmp_path / "products.csv"
    catalog_csv.write_text(
        "id,category,material,price,is_featured\n"
        "P1,nhan,gold_18k,12000000,false\n"
        "P2,lac,pearl,90000000,false\n"
        "P3,bong_tai,silver,500000,true\n"
    )
    return str(events_csv), str(catalog_csv)


def test_build_service_without_saved_table(csv_files, now):
    service = build_service_from_csv(*csv_files)
    try:
        assert len(service.similarity_store) == 0
        assert len(service.get_recommendations(limit=3, now=now)) > 0
    finally:
        service.close()


def test_build_service_loads_saved_table(csv_files, tmp_path, now):
    builder = build_service_from_csv(*csv_files)
    try:
        builder.update_recommendations(ADMIN, now=now)
        save_similarity_table(builder.similarity_store, str(tmp_path / "model"))
    finally:
        builder.close()

    service = build_service_from_csv(*csv_files, similarity_dir=str(tmp_path / "model"))
    try:
        assert len(service.similarity_store) == len(builder.similarity_store)
        products = service.get_recommendations(product_id="P1", limit=2, now=now)
        assert products[0].id == "P2"
    finally:
        service.close()


def test_build_service_missing_csv(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_service_from_csv(str(tmp_path / "a.csv"), str(tmp_path / "b.csv"))
