# src/fujical/core/scoring.py
from __future__ import annotations

import math
from typing import Literal, Tuple

AccuracyTier = Literal["perfect", "excellent", "good", "fair"]

# Strictest first. A match belongs to the first band whose limit covers both
# the azimuth and the elevation difference.
ACCURACY_BANDS: Tuple[Tuple[AccuracyTier, float], ...] = (
    ("perfect", 0.1),
    ("excellent", 0.25),
    ("good", 0.4),
)

TIER_ORDER: Tuple[AccuracyTier, ...] = ("perfect", "excellent", "good", "fair")

DISTANCE_PENALTY_START_KM = 150.0
DISTANCE_PENALTY_FLOOR = 0.8


def total_diff(azimuth_diff: float, elevation_diff: float) -> float:
    return math.hypot(azimuth_diff, elevation_diff)


def accuracy_tier(azimuth_diff: float, elevation_diff: float) -> AccuracyTier:
    """Classify an alignment by max(|azimuth_diff|, |elevation_diff|)."""
    worst = max(abs(azimuth_diff), abs(elevation_diff))
    for tier, limit in ACCURACY_BANDS:
        if worst <= limit:
            return tier
    return "fair"


def geometric_precision(azimuth_diff: float, elevation_diff: float) -> float:
    return max(0.1, 1.0 - (abs(azimuth_diff) + abs(elevation_diff)) / 4.0)


def distance_penalty(distance_km: float) -> float:
    """1.0 up to 150 km, then linear decay with a floor of 0.8."""
    if distance_km <= DISTANCE_PENALTY_START_KM:
        return 1.0
    return max(DISTANCE_PENALTY_FLOOR, 1.0 - (distance_km - DISTANCE_PENALTY_START_KM) / 200.0)


def quality_score(
    azimuth_diff: float,
    elevation_diff: float,
    *,
    distance_km: float,
    base: float = 1.0,
) -> float:
    """precision x base x distance penalty, clamped to [0, 1]."""
    q = geometric_precision(azimuth_diff, elevation_diff) * base * distance_penalty(distance_km)
    return min(1.0, max(0.0, q))


def base_quality(body: str, moon_illumination: float | None = None) -> float:
    """The Sun is always bright enough; the Moon scales with its lit fraction."""
    if body == "sun":
        return 1.0
    if moon_illumination is None:
        return 0.0
    return min(1.0, max(0.0, float(moon_illumination)))
