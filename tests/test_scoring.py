from __future__ import annotations

import pytest

from fujical.core.scoring import (
    accuracy_tier,
    base_quality,
    distance_penalty,
    quality_score,
    total_diff,
)


@pytest.mark.parametrize(
    "az,el,tier",
    [
        (0.0, 0.0, "perfect"),
        (0.1, 0.1, "perfect"),
        (0.11, 0.0, "excellent"),
        (0.0, 0.25, "excellent"),
        (0.26, 0.1, "good"),
        (0.05, 0.4, "good"),
        (0.41, 0.0, "fair"),
        (2.0, 1.0, "fair"),
    ],
)
def test_accuracy_tier_uses_worst_axis(az, el, tier):
    assert accuracy_tier(az, el) == tier


def test_total_diff_is_euclidean():
    assert total_diff(0.3, 0.4) == pytest.approx(0.5)


def test_quality_perfect_near():
    assert quality_score(0.0, 0.0, distance_km=43.0) == pytest.approx(1.0)


def test_quality_precision_term():
    assert quality_score(0.4, 0.4, distance_km=43.0) == pytest.approx(0.8)
    # floored at 0.1
    assert quality_score(3.0, 3.0, distance_km=43.0) == pytest.approx(0.1)


@pytest.mark.parametrize(
    "km,penalty",
    [(10.0, 1.0), (150.0, 1.0), (170.0, 0.9), (190.0, 0.8), (290.0, 0.8)],
)
def test_distance_penalty(km, penalty):
    assert distance_penalty(km) == pytest.approx(penalty)


def test_quality_moon_scales_with_illumination():
    q = quality_score(0.0, 0.0, distance_km=43.0, base=base_quality("moon", 0.75))
    assert q == pytest.approx(0.75)
    assert base_quality("sun", None) == 1.0
    assert base_quality("moon", None) == 0.0


def test_quality_is_clamped():
    assert quality_score(0.0, 0.0, distance_km=10.0, base=1.5) == 1.0
    assert 0.0 <= quality_score(10.0, 10.0, distance_km=500.0, base=0.01) <= 1.0
