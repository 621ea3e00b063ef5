# src/fujical/core/alignment.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .astronomy import BodyPosition, CelestialEngine
from .config import AlignmentConfig, SearchWindow, SubEvent, Variant
from .errors import NoAlignmentFound
from .geo import azimuth_distance
from .models import Body, FujiEvent, ObserverLocation, PhenomenonType
from .scoring import AccuracyTier, accuracy_tier, base_quality, quality_score, total_diff
from .timeutil import jst_date_of, jst_midnight_utc, require_utc_range

log = logging.getLogger(__name__)

SUB_EVENTS: Tuple[SubEvent, ...] = ("sunrise", "sunset", "rising", "setting")

SUB_EVENT_BODY: Dict[str, Body] = {
    "sunrise": "sun",
    "sunset": "sun",
    "rising": "moon",
    "setting": "moon",
}

SUB_EVENT_PHENOMENON: Dict[str, PhenomenonType] = {
    "sunrise": "diamond_sunrise",
    "sunset": "diamond_sunset",
    "rising": "pearl_moonrise",
    "setting": "pearl_moonset",
}


@dataclass(frozen=True)
class AlignmentResult:
    sub_event: SubEvent
    body: Body
    variant: Variant
    instant: datetime
    azimuth: float
    elevation: float
    target_elevation: float
    azimuth_diff: float
    elevation_diff: float
    score: float
    accuracy_tier: AccuracyTier
    refined: bool = False


@dataclass(frozen=True)
class _Best:
    score: float
    variant: Variant
    target: float
    instant: datetime
    position: BodyPosition
    azimuth_diff: float
    elevation_diff: float


def alignment_score(azimuth_diff: float, elevation_diff: float) -> float:
    """Azimuth is weighted twice as heavily as elevation."""
    return azimuth_diff * 2.0 + elevation_diff


def window_bounds(day: date, window: SearchWindow) -> Tuple[datetime, datetime]:
    """UTC [start, end] of a JST-relative search window for `day`."""
    midnight = jst_midnight_utc(day)
    start = midnight + timedelta(hours=window.start_hour)
    end = midnight + timedelta(hours=window.end_hour)
    return require_utc_range(start, end)


def _instants(start: datetime, end: datetime, step_seconds: int) -> List[datetime]:
    if step_seconds <= 0:
        raise ValueError("step_seconds must be positive")
    step = timedelta(seconds=step_seconds)
    out: List[datetime] = []
    t = start
    while t <= end:
        out.append(t)
        t = t + step
    return out


def side_compatible(sub_event: SubEvent, fuji_bearing: float) -> bool:
    """Rises happen in the eastern half of the sky, sets in the western half."""
    if sub_event in ("sunrise", "rising"):
        return 0.0 <= fuji_bearing < 180.0
    return 180.0 <= fuji_bearing < 360.0


@dataclass(frozen=True)
class AlignmentSearch:
    """
    Coarse-to-fine search for the instant a body best lines up with the
    summit, for one date / location / sub-event.
    """

    engine: CelestialEngine
    config: AlignmentConfig = field(default_factory=AlignmentConfig)

    # ---- tolerances ----
    def azimuth_tolerance(self, body: str, distance_km: float) -> float:
        cfg = self.config
        if body == "sun":
            bands, far = cfg.diamond_azimuth_tolerances, cfg.diamond_azimuth_tolerance_far
        else:
            bands, far = cfg.pearl_azimuth_tolerances, cfg.pearl_azimuth_tolerance_far
        for max_km, tol in bands:
            if distance_km <= max_km:
                return tol
        return far

    def elevation_tolerance(self, body: str) -> float:
        if body == "sun":
            return self.config.diamond_elevation_tolerance
        return self.config.pearl_elevation_tolerance

    def variant_targets(self, body: str, fuji_elevation: float) -> List[Tuple[Variant, float]]:
        """
        Target body-centre elevations.
        top: upper limb on the summit, bottom: lower limb on the summit.
        """
        diameter = self.config.sun_diameter if body == "sun" else self.config.moon_diameter
        offsets = {"center": 0.0, "top": -diameter / 2.0, "bottom": diameter / 2.0}
        return [(v, fuji_elevation + offsets[v]) for v in self.config.variants]

    # ---- scan ----
    def _best(
        self,
        instants: Sequence[datetime],
        positions: Sequence[BodyPosition],
        bearing: float,
        targets: Sequence[Tuple[Variant, float]],
    ) -> Optional[_Best]:
        best: Optional[_Best] = None
        # variants outer so that equal scores keep the earlier-declared variant
        for variant, target in targets:
            for t, p in zip(instants, positions):
                az_diff = azimuth_distance(p.azimuth, bearing)
                el_diff = abs(p.elevation - target)
                s = alignment_score(az_diff, el_diff)
                if best is None or s < best.score:
                    best = _Best(s, variant, target, t, p, az_diff, el_diff)
        return best

    def search(self, day: date, location: ObserverLocation, sub_event: SubEvent) -> Optional[AlignmentResult]:
        """
        Best alignment for `sub_event` on `day` (JST), or None when nothing
        falls within tolerance.
        """
        if not location.has_fuji_geometry:
            location = location.with_fuji_geometry()
        body = SUB_EVENT_BODY[sub_event]
        bearing = float(location.fuji_bearing)

        if not side_compatible(sub_event, bearing):
            return None

        window = self.config.window(sub_event)
        start, end = window_bounds(day, window)
        targets = self.variant_targets(body, float(location.fuji_elevation))
        observer = location.point

        instants = _instants(start, end, window.step_seconds)
        positions = self.engine.positions_many(body, instants, observer)
        best = self._best(instants, positions, bearing, targets)
        if best is None:
            return None

        refined = False
        if best.score < self.config.escalation_score:
            span = timedelta(minutes=self.config.fine_window_minutes)
            f0 = max(start, best.instant - span)
            f1 = min(end, best.instant + span)
            fine_instants = _instants(f0, f1, window.fine_step_seconds)
            fine_positions = self.engine.positions_many(body, fine_instants, observer)
            fine = self._best(fine_instants, fine_positions, bearing, targets)
            if fine is not None and fine.score < best.score:
                best = fine
                refined = True

        az_tol = self.azimuth_tolerance(body, location.fuji_distance_km)
        el_tol = self.elevation_tolerance(body)
        if best.azimuth_diff > az_tol or best.elevation_diff > el_tol:
            log.debug(
                "no alignment: loc=%s day=%s %s best az_diff=%.3f (tol %.2f) el_diff=%.3f (tol %.2f)",
                location.id,
                day,
                sub_event,
                best.azimuth_diff,
                az_tol,
                best.elevation_diff,
                el_tol,
            )
            return None

        return AlignmentResult(
            sub_event=sub_event,
            body=body,
            variant=best.variant,
            instant=best.instant,
            azimuth=best.position.azimuth,
            elevation=best.position.elevation,
            target_elevation=best.target,
            azimuth_diff=best.azimuth_diff,
            elevation_diff=best.elevation_diff,
            score=best.score,
            accuracy_tier=accuracy_tier(best.azimuth_diff, best.elevation_diff),
            refined=refined,
        )

    def day_events(self, day: date, location: ObserverLocation) -> List[FujiEvent]:
        """All Diamond/Pearl events for one location and date, without precomputed data."""
        if not location.has_fuji_geometry:
            location = location.with_fuji_geometry()

        out: List[FujiEvent] = []
        for sub_event in SUB_EVENTS:
            res = self.search(day, location, sub_event)
            if res is None:
                continue

            phase = None
            illum = None
            if res.body == "moon":
                mp = self.engine.moon_phase(res.instant)
                phase, illum = mp.phase_deg, mp.illuminated_fraction
                if illum < self.config.pearl_min_illumination:
                    log.debug("pearl skipped: loc=%s day=%s illumination=%.2f", location.id, day, illum)
                    continue

            out.append(
                FujiEvent(
                    location_id=location.id,
                    date=jst_date_of(res.instant),
                    instant=res.instant,
                    phenomenon_type=SUB_EVENT_PHENOMENON[sub_event],
                    azimuth=res.azimuth,
                    elevation=res.elevation,
                    azimuth_diff=res.azimuth_diff,
                    elevation_diff=res.elevation_diff,
                    total_diff=total_diff(res.azimuth_diff, res.elevation_diff),
                    accuracy_tier=res.accuracy_tier,
                    quality_score=quality_score(
                        res.azimuth_diff,
                        res.elevation_diff,
                        distance_km=location.fuji_distance_km,
                        base=base_quality(res.body, illum),
                    ),
                    moon_phase=phase,
                    moon_illumination=illum,
                )
            )

        out.sort(key=lambda e: e.instant)
        return out


def require_alignment(
    searcher: AlignmentSearch,
    day: date,
    location: ObserverLocation,
    sub_event: SubEvent,
) -> AlignmentResult:
    res = searcher.search(day, location, sub_event)
    if res is None:
        raise NoAlignmentFound(f"no {sub_event} alignment for location {location.id} on {day}")
    return res
