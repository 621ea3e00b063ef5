# src/fujical/pipeline/matching.py
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from fujical.core.config import MatchingConfig
from fujical.core.errors import FujiCalError, StageCancelled
from fujical.core.geo import apparent_summit_width, azimuth_distance
from fujical.core.models import FujiEvent, ObserverLocation, OrbitSnapshot, phenomenon_for
from fujical.core.scoring import accuracy_tier, base_quality, quality_score, total_diff
from fujical.core.timeutil import day_part_of, year_bounds

from .locations import LocationRepository
from .snapshots import check_cancel
from .store import FujiStore, azimuth_range_around

log = logging.getLogger(__name__)

STAGE3 = "stage3"


def location_stage(location_id: int) -> str:
    """Checkpoint key marking one location's events as matched for a year."""
    return f"{STAGE3}:{location_id}"


# (date, body, day_part, phenomenon_type)
GateKey = Tuple[date, str, str, str]


@dataclass(frozen=True)
class LocationOutcome:
    location_id: int
    events: int
    skipped: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class MatchingSummary:
    year: int
    total_events: int
    locations: int
    matched_locations: int
    outcomes: Tuple[LocationOutcome, ...] = ()

    @property
    def failed(self) -> List[int]:
        return [o.location_id for o in self.outcomes if o.error is not None]


def deduplicate_events(
    events: Sequence[FujiEvent],
    *,
    quality_margin: float = 0.1,
    min_separation: timedelta = timedelta(hours=2),
    max_per_day: int = 2,
) -> List[FujiEvent]:
    """
    Per (date, phenomenon_type): keep the best-quality event, plus others
    within `quality_margin` of it that are at least `min_separation` away
    from every kept event.
    """
    groups: Dict[Tuple[date, str], List[FujiEvent]] = defaultdict(list)
    for e in events:
        groups[(e.date, e.phenomenon_type)].append(e)

    out: List[FujiEvent] = []
    for key in sorted(groups):
        ranked = sorted(groups[key], key=lambda e: (-e.quality_score, e.total_diff, e.instant))
        best = ranked[0]
        kept = [best]
        for e in ranked[1:]:
            if len(kept) >= max_per_day:
                break
            if best.quality_score - e.quality_score > quality_margin:
                break
            if all(abs(e.instant - k.instant) >= min_separation for k in kept):
                kept.append(e)
        out.extend(kept)

    out.sort(key=lambda e: (e.instant, e.phenomenon_type))
    return out


@dataclass(frozen=True)
class LocationMatcher:
    """
    Stage 3: match the year's snapshots against each location's Fuji geometry.

    With source="candidates" only (date, body, day part, type) slots that
    Stage 2 kept are considered; "snapshots" skips that gate.
    """

    store: FujiStore
    locations: LocationRepository
    config: MatchingConfig = field(default_factory=MatchingConfig)

    # ---- tolerances ----
    def diamond_azimuth_tolerance(self, location: ObserverLocation) -> float:
        width = apparent_summit_width(float(location.fuji_distance), summit_width=self.config.summit_width_m)
        return width + self.config.sun_radius

    # ---- gate ----
    def candidate_gate(self, year: int) -> Optional[FrozenSet[GateKey]]:
        if self.config.source == "snapshots":
            return None
        return frozenset(
            (c.date, c.body, c.day_part, c.phenomenon_type) for c in self.store.query_candidates(year)
        )

    # ---- matching ----
    def _to_event(self, location: ObserverLocation, row: OrbitSnapshot, az_diff: float, el_diff: float) -> FujiEvent:
        return FujiEvent(
            location_id=location.id,
            date=row.date,
            instant=row.instant,
            phenomenon_type=phenomenon_for(row.body, row.azimuth < 180.0),
            azimuth=row.azimuth,
            elevation=row.elevation,
            azimuth_diff=az_diff,
            elevation_diff=el_diff,
            total_diff=total_diff(az_diff, el_diff),
            accuracy_tier=accuracy_tier(az_diff, el_diff),
            quality_score=quality_score(
                az_diff,
                el_diff,
                distance_km=location.fuji_distance_km,
                base=base_quality(row.body, row.moon_illumination),
            ),
            moon_phase=row.moon_phase,
            moon_illumination=row.moon_illumination,
        )

    def match_rows(
        self,
        location: ObserverLocation,
        rows: Sequence[OrbitSnapshot],
        gate: Optional[FrozenSet[GateKey]] = None,
    ) -> List[FujiEvent]:
        """Raw (not yet deduplicated) matches of snapshot rows against one location."""
        cfg = self.config
        bearing = float(location.fuji_bearing)
        target = float(location.fuji_elevation)
        sun_az_tol = self.diamond_azimuth_tolerance(location)

        out: List[FujiEvent] = []
        for row in rows:
            az_diff = azimuth_distance(row.azimuth, bearing)
            el_diff = abs(row.elevation - target)
            if row.body == "sun":
                if az_diff > sun_az_tol or el_diff > cfg.diamond_elevation_band:
                    continue
            else:
                if az_diff > cfg.pearl_azimuth_tolerance or el_diff > cfg.pearl_elevation_tolerance:
                    continue
                if row.moon_illumination is None or row.moon_illumination < cfg.pearl_min_illumination:
                    continue

            ev = self._to_event(location, row, az_diff, el_diff)
            if gate is not None and (row.date, row.body, day_part_of(row.instant), ev.phenomenon_type) not in gate:
                continue
            out.append(ev)
        return out

    def events_for(
        self,
        location: ObserverLocation,
        year: int,
        gate: Optional[FrozenSet[GateKey]] = None,
    ) -> List[FujiEvent]:
        """Deduplicated events for one location and year; nothing is written."""
        cfg = self.config
        if not location.has_fuji_geometry:
            location = location.with_fuji_geometry()

        bearing = float(location.fuji_bearing)
        target = float(location.fuji_elevation)
        first, last = year_bounds(year)

        sun_tol = self.diamond_azimuth_tolerance(location)
        sun = self.store.query_snapshots(
            year,
            body="sun",
            start=first,
            end=last,
            azimuth=azimuth_range_around(bearing, sun_tol),
            elevation=(target - cfg.diamond_elevation_band, target + cfg.diamond_elevation_band),
        )
        moon = self.store.query_snapshots(
            year,
            body="moon",
            start=first,
            end=last,
            azimuth=azimuth_range_around(bearing, cfg.pearl_azimuth_tolerance),
            elevation=(target - cfg.pearl_elevation_tolerance, target + cfg.pearl_elevation_tolerance),
            min_illumination=cfg.pearl_min_illumination,
        )

        raw = self.match_rows(location, [*sun, *moon], gate)
        return deduplicate_events(
            raw,
            quality_margin=cfg.dedup_quality_margin,
            min_separation=timedelta(hours=cfg.dedup_min_separation_hours),
            max_per_day=cfg.max_events_per_day,
        )

    def match_location(
        self,
        year: int,
        location: ObserverLocation,
        gate: Optional[FrozenSet[GateKey]] = None,
        *,
        use_gate: bool = True,
    ) -> LocationOutcome:
        """Replace one location's events for `year`."""
        self.store.clear_checkpoint(location_stage(location.id), year)
        if not location.has_fuji_geometry:
            location = location.with_fuji_geometry()

        self.store.delete_events(year, location.id)

        if location.fuji_distance_km > self.config.max_distance_km:
            log.info(
                "stage3 %d: location %s skipped (%.1f km from summit)",
                year,
                location.id,
                location.fuji_distance_km,
            )
            self.store.set_checkpoint(location_stage(location.id), year, year_bounds(year)[1])
            return LocationOutcome(location_id=location.id, events=0, skipped="too far")

        if gate is None and use_gate:
            gate = self.candidate_gate(year)

        events = self.events_for(location, year, gate)
        bs = max(1, self.config.batch_size)
        for i in range(0, len(events), bs):
            self.store.insert_events(events[i : i + bs])
        self.store.set_checkpoint(location_stage(location.id), year, year_bounds(year)[1])
        log.debug("stage3 %d: location %s events=%d", year, location.id, len(events))
        return LocationOutcome(location_id=location.id, events=len(events))

    def clear_location_events(self, location_id: int, year: Optional[int] = None) -> int:
        n = self.store.delete_events(year, location_id)
        if year is not None:
            self.store.clear_checkpoint(location_stage(location_id), year)
        log.info("stage3: removed %d events for location %s (year=%s)", n, location_id, year)
        return n

    def match_all(self, year: int, *, cancel: Optional[threading.Event] = None) -> MatchingSummary:
        removed = self.store.delete_events(year)
        self.store.clear_checkpoint(STAGE3, year)
        log.info("stage3 %d: cleared %d events", year, removed)

        locations = self.locations.list_locations()
        gate = self.candidate_gate(year)
        if gate is not None and not gate:
            log.warning("stage3 %d: no stage2 candidates, nothing to match", year)

        def one(loc: ObserverLocation) -> LocationOutcome:
            check_cancel(cancel, f"{STAGE3} location {loc.id}")
            try:
                return self.match_location(year, loc, gate, use_gate=False)
            except StageCancelled:
                raise
            except FujiCalError as e:
                log.warning("stage3 %d: location %s failed: %s", year, loc.id, e)
                return LocationOutcome(location_id=loc.id, events=0, error=str(e))

        workers = max(1, self.config.workers)
        if workers == 1:
            outcomes = [one(loc) for loc in locations]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                outcomes = list(executor.map(one, locations))

        self.store.set_checkpoint(STAGE3, year, year_bounds(year)[1])
        total = sum(o.events for o in outcomes)
        matched = sum(1 for o in outcomes if o.events > 0)
        log.info("stage3 %d: events=%d locations=%d/%d", year, total, matched, len(locations))
        return MatchingSummary(
            year=year,
            total_events=total,
            locations=len(locations),
            matched_locations=matched,
            outcomes=tuple(outcomes),
        )
