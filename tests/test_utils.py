"""Tests for decay, weighting, similarity and bucketing helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from jewelrec.recommender.utils import (
    behavior_weight,
    buckets_adjacent,
    cosine_similarity,
    days_between,
    normalize_by_max,
    price_bucket,
    time_decay,
    weighted_profile,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# ===== Time decay =====


@pytest.mark.parametrize("rate", [0.5, 0.9, 0.95, 1.0])
def test_decay_is_one_at_age_zero(rate):
    assert time_decay(NOW, rate, now=NOW) == 1.0


@pytest.mark.parametrize("rate", [0.5, 0.9, 0.95, 1.0])
def test_decay_is_non_increasing_in_age(rate):
    ages = [0, 0.25, 1, 1.5, 7, 30, 365]
    values = [time_decay(NOW - timedelta(days=age), rate, now=NOW) for age in ages]
    assert all(earlier >= later for earlier, later in zip(values, values[1:]))


@pytest.mark.parametrize("rate", [0.5, 0.9, 0.95])
def test_decay_strictly_between_zero_and_one_for_positive_age(rate):
    for age in [0.01, 1, 10, 90]:
        value = time_decay(NOW - timedelta(days=age), rate, now=NOW)
        assert 0 < value < 1


def test_decay_uses_fractional_days():
    event_time = NOW - timedelta(hours=36)
    assert time_decay(event_time, 0.9, now=NOW) == pytest.approx(0.9 ** 1.5)


def test_decay_treats_future_events_as_fresh():
    assert time_decay(NOW + timedelta(days=2), 0.9, now=NOW) == 1.0


def test_decay_treats_naive_datetimes_as_utc():
    naive = datetime(2025, 5, 31, 12, 0)
    assert days_between(NOW, naive) == pytest.approx(1.0)
    assert time_decay(naive, 0.9, now=NOW) == pytest.approx(0.9)


@pytest.mark.parametrize("rate", [0, -0.5, 1.5])
def test_decay_rejects_rates_outside_unit_interval(rate):
    with pytest.raises(ValueError):
        time_decay(NOW, rate, now=NOW)


# ===== Behavior weights =====


def test_behavior_weights_follow_intent_strength():
    assert behavior_weight("view") == 1
    assert behavior_weight("wishlist") == 3
    assert behavior_weight("add_to_cart") == 4
    assert behavior_weight("purchase") == 6


def test_unknown_behavior_defaults_to_view_weight():
    assert behavior_weight("share") == 1
    assert behavior_weight("") == 1


def test_weighted_profile_sums_weight_times_decay(make_event):
    events = [
        make_event("u1", "A", "purchase"),
        make_event("u1", "A", "view", days_ago=1),
        make_event("u1", "B", "wishlist", days_ago=2),
    ]
    profile = weighted_profile(events, 0.9, NOW)
    assert profile["A"] == pytest.approx(6 + 0.9)
    assert profile["B"] == pytest.approx(3 * 0.81)


# ===== Cosine similarity =====


def test_cosine_is_symmetric():
    a = {"A": 6.0, "B": 1.0, "C": 0.5}
    b = {"B": 4.0, "C": 2.0, "D": 1.0}
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_cosine_of_identical_profiles_is_one():
    a = {"A": 6.0, "B": 1.0}
    assert cosine_similarity(a, dict(a)) == pytest.approx(1.0)


def test_cosine_with_empty_profile_is_zero():
    assert cosine_similarity({}, {"A": 1.0}) == 0.0
    assert cosine_similarity({"A": 1.0}, {}) == 0.0
    assert cosine_similarity({}, {}) == 0.0


def test_cosine_of_disjoint_profiles_is_zero():
    assert cosine_similarity({"A": 1.0}, {"B": 1.0}) == 0.0


def test_cosine_of_zero_vector_is_zero():
    assert cosine_similarity({"A": 0.0}, {"A": 1.0}) == 0.0


def test_cosine_known_value():
    # (6*1) / (sqrt(37) * 1)
    assert cosine_similarity({"A": 6.0, "B": 1.0}, {"A": 1.0}) == pytest.approx(6 / 37 ** 0.5)


# ===== Price buckets =====


@pytest.mark.parametrize(
    "price,bucket",
    [
        (0, 0),
        (999_999, 0),
        (1_000_000, 1),
        (3_000_000, 1),
        (12_000_000, 2),
        (15_000_000, 3),
        (49_999_999, 3),
        (50_000_000, 4),
        (300_000_000, 4),
    ],
)
def test_price_bucket_breakpoints(price, bucket):
    assert price_bucket(price) == bucket


def test_adjacent_buckets_differ_by_exactly_one():
    assert buckets_adjacent(1, 2)
    assert buckets_adjacent(3, 2)
    assert not buckets_adjacent(2, 2)
    assert not buckets_adjacent(0, 2)


# ===== Normalization =====


def test_normalize_divides_by_maximum():
    assert normalize_by_max({"A": 6.0, "B": 3.0}) == {"A": 1.0, "B": 0.5}


def test_normalize_floors_denominator_at_one():
    assert normalize_by_max({"A": 0.5, "B": 0.25}) == {"A": 0.5, "B": 0.25}
    assert normalize_by_max({"A": 0.0}) == {"A": 0.0}


def test_normalize_empty_map():
    assert normalize_by_max({}) == {}
