# src/fujical/core/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Tuple

from .geo import FUJI_SUMMIT, FUJI_SUMMIT_WIDTH_M, GeoPoint

SubEvent = Literal["sunrise", "sunset", "rising", "setting"]
Variant = Literal["center", "top", "bottom"]
MatchSource = Literal["candidates", "snapshots"]


@dataclass(frozen=True)
class SearchWindow:
    """
    JST hours relative to the searched date. end_hour > 24 crosses midnight
    (e.g. 18 -> 30 is 18:00 .. 06:00 next day).
    """
    start_hour: float
    end_hour: float
    step_seconds: int = 30
    fine_step_seconds: int = 10


@dataclass(frozen=True)
class AlignmentConfig:
    sunrise: SearchWindow = field(default_factory=lambda: SearchWindow(4, 12))
    sunset: SearchWindow = field(default_factory=lambda: SearchWindow(14, 20))
    # bright waxing moons rise from early afternoon
    rising: SearchWindow = field(default_factory=lambda: SearchWindow(12, 30))
    # 沈む側は角速度が大きいので刻みを細かく
    setting: SearchWindow = field(default_factory=lambda: SearchWindow(0, 12, step_seconds=20, fine_step_seconds=5))

    escalation_score: float = 3.0
    fine_window_minutes: int = 2

    # (max distance km, tolerance deg), checked in order; *_far beyond the last
    diamond_azimuth_tolerances: Tuple[Tuple[float, float], ...] = ((50.0, 0.25), (100.0, 0.4))
    diamond_azimuth_tolerance_far: float = 0.6
    pearl_azimuth_tolerances: Tuple[Tuple[float, float], ...] = ((50.0, 1.0), (100.0, 2.0))
    pearl_azimuth_tolerance_far: float = 3.0

    diamond_elevation_tolerance: float = 0.25
    pearl_elevation_tolerance: float = 4.0

    sun_diameter: float = 0.533
    moon_diameter: float = 0.518
    variants: Tuple[Variant, ...] = ("center", "top", "bottom")

    pearl_min_illumination: float = 0.70

    def window(self, sub_event: SubEvent) -> SearchWindow:
        if sub_event not in ("sunrise", "sunset", "rising", "setting"):
            raise ValueError(f"unknown sub-event: {sub_event!r}")
        return getattr(self, sub_event)


@dataclass(frozen=True)
class SnapshotConfig:
    """Stage 1: location-independent 5-minute snapshots."""
    step_minutes: int = 5
    chunk_days: int = 14
    batch_size: int = 200
    workers: int = 1

    reference: GeoPoint = FUJI_SUMMIT

    sun_visible_elevation: float = -6.0
    moon_visible_elevation: float = -2.0


@dataclass(frozen=True)
class CandidateConfig:
    """Stage 2: geometric/seasonal pre-filter."""
    # Fuji bearings seen from the west side (rise) and the east side (set)
    east_band: Tuple[float, float] = (60.0, 130.0)
    west_band: Tuple[float, float] = (230.0, 300.0)

    min_elevation: float = -10.0
    max_elevation: float = 90.0

    # [start, end) JST hours
    diamond_hours: Tuple[Tuple[int, int], ...] = ((4, 10), (14, 20))
    pearl_min_illumination: float = 0.70

    chunk_days: int = 31
    batch_size: int = 200


@dataclass(frozen=True)
class MatchingConfig:
    """Stage 3: per-location matching."""
    source: MatchSource = "candidates"

    summit_width_m: float = FUJI_SUMMIT_WIDTH_M
    sun_radius: float = 0.265
    diamond_elevation_band: float = 2.0

    pearl_azimuth_tolerance: float = 1.5
    pearl_elevation_tolerance: float = 1.5
    pearl_min_illumination: float = 0.70

    max_distance_km: float = 300.0

    dedup_quality_margin: float = 0.1
    dedup_min_separation_hours: float = 2.0
    max_events_per_day: int = 2

    workers: int = 1
    batch_size: int = 200


@dataclass(frozen=True)
class OrchestratorConfig:
    min_location_coverage: float = 0.5


@dataclass(frozen=True)
class FujiCalConfig:
    # astronomical refraction on body elevations (CelestialEngine)
    apply_refraction: bool = True
    alignment: AlignmentConfig = field(default_factory=AlignmentConfig)
    snapshots: SnapshotConfig = field(default_factory=SnapshotConfig)
    candidates: CandidateConfig = field(default_factory=CandidateConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
