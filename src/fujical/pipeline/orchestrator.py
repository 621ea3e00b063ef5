# src/fujical/pipeline/orchestrator.py
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Literal, Optional

from fujical.core.alignment import AlignmentSearch
from fujical.core.astronomy import CelestialEngine, CelestialPositionProvider
from fujical.core.config import FujiCalConfig
from fujical.core.errors import FujiCalError, RunInProgress, StageFailure
from fujical.core.models import FujiEvent, ObserverLocation
from fujical.core.scoring import TIER_ORDER
from fujical.core.timeutil import days_in_year

from .candidates import CandidateFilter
from .locations import LocationRepository
from .matching import STAGE3, LocationMatcher, location_stage
from .reports import (
    HealthCheckItem,
    HealthReport,
    PrecomputeResult,
    RecomputeResult,
    StageTiming,
    YearStatistics,
)
from .snapshots import OrbitSnapshotGenerator
from .store import FujiStore

log = logging.getLogger(__name__)

RunState = Literal["idle", "stage1_running", "stage2_running", "stage3_running", "done", "failed"]

HEALTHY_MESSAGE = "All stages healthy; no action needed."


def _ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000.0, 1)


@dataclass
class Orchestrator:
    """
    Runs Stage 1 -> 2 -> 3 for a year, plus the narrower entry points
    (single location recompute, direct day computation, health check).
    """

    engine: CelestialEngine
    store: FujiStore
    locations: LocationRepository
    config: FujiCalConfig = field(default_factory=FujiCalConfig)

    state: RunState = field(default="idle", init=False)
    last_result: Optional[PrecomputeResult] = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def from_provider(
        cls,
        provider: CelestialPositionProvider,
        store: FujiStore,
        locations: LocationRepository,
        config: Optional[FujiCalConfig] = None,
    ) -> "Orchestrator":
        cfg = config or FujiCalConfig()
        return cls(
            engine=CelestialEngine(provider=provider, apply_refraction=cfg.apply_refraction),
            store=store,
            locations=locations,
            config=cfg,
        )

    # ---- components ----
    @property
    def snapshot_generator(self) -> OrbitSnapshotGenerator:
        return OrbitSnapshotGenerator(self.engine, self.store, self.config.snapshots)

    @property
    def candidate_filter(self) -> CandidateFilter:
        return CandidateFilter(self.store, self.config.candidates)

    @property
    def matcher(self) -> LocationMatcher:
        return LocationMatcher(self.store, self.locations, self.config.matching)

    @property
    def alignment(self) -> AlignmentSearch:
        return AlignmentSearch(self.engine, self.config.alignment)

    # ---- state ----
    def _transition(self, new: RunState) -> None:
        log.info("orchestrator: %s -> %s", self.state, new)
        self.state = new

    def _acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise RunInProgress("another run is in progress on this orchestrator")

    def _stage(
        self,
        name: str,
        state: RunState,
        fn: Callable[[], Any],
        count_of: Callable[[Any], int],
        breakdown: Dict[str, StageTiming],
    ) -> Any:
        self._transition(state)
        t0 = time.perf_counter()
        try:
            res = fn()
        except Exception as e:
            breakdown[name] = StageTiming(stage=name, time_ms=_ms(t0), detail={"error": str(e)})
            self._transition("failed")
            log.exception("%s failed", name)
            raise StageFailure(
                name,
                f"{type(e).__name__}: {e}",
                telemetry={k: v.model_dump() for k, v in breakdown.items()},
            ) from e
        breakdown[name] = StageTiming(stage=name, time_ms=_ms(t0), count=count_of(res), detail=_detail(res))
        return res

    # ---- full runs ----
    def run_year(
        self,
        year: int,
        *,
        resume: bool = False,
        from_stage: int = 1,
        cancel: Optional[threading.Event] = None,
    ) -> PrecomputeResult:
        """
        Run the pipeline for `year`. Raises StageFailure on the first failing
        stage; earlier stage data is left as written.
        """
        if from_stage not in (1, 2):
            raise ValueError("from_stage must be 1 or 2")
        self._acquire()
        try:
            t0 = time.perf_counter()
            breakdown: Dict[str, StageTiming] = {}
            log.info("precompute %d: start (from stage %d)", year, from_stage)
            # stored events stop being current once earlier stages are rebuilt
            self.store.clear_checkpoint(STAGE3, year)

            if from_stage == 1:
                self._stage(
                    "stage1",
                    "stage1_running",
                    lambda: self.snapshot_generator.generate(year, resume=resume, cancel=cancel),
                    lambda r: r.total,
                    breakdown,
                )
            self._stage(
                "stage2",
                "stage2_running",
                lambda: self.candidate_filter.run(year),
                lambda r: r.total,
                breakdown,
            )
            self._stage(
                "stage3",
                "stage3_running",
                lambda: self.matcher.match_all(year, cancel=cancel),
                lambda r: r.total_events,
                breakdown,
            )

            self._transition("done")
            result = PrecomputeResult(
                success=True,
                year=year,
                total_data_points=self.store.count_snapshots(year),
                total_events=breakdown["stage3"].count,
                time_ms=_ms(t0),
                stage_breakdown=breakdown,
            )
            log.info(
                "precompute %d: done in %.1f ms (snapshots=%d events=%d)",
                year,
                result.time_ms,
                result.total_data_points,
                result.total_events,
            )
            self.last_result = result
            return result
        finally:
            self._lock.release()

    def precompute_year(
        self,
        year: int,
        *,
        resume: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> PrecomputeResult:
        """run_year, reporting a failed stage in the result instead of raising."""
        return self._guarded(year, lambda: self.run_year(year, resume=resume, cancel=cancel))

    def execute_from_stage2(self, year: int, *, cancel: Optional[threading.Event] = None) -> PrecomputeResult:
        """Stages 2 and 3 only, on the year's existing Stage-1 snapshots."""
        return self._guarded(year, lambda: self.run_year(year, from_stage=2, cancel=cancel))

    def _guarded(self, year: int, fn: Callable[[], PrecomputeResult]) -> PrecomputeResult:
        t0 = time.perf_counter()
        try:
            return fn()
        except StageFailure as e:
            result = PrecomputeResult(
                success=False,
                year=year,
                time_ms=_ms(t0),
                stage_breakdown={k: StageTiming(**v) for k, v in e.telemetry.items()},
                failed_stage=e.stage,
                error=e.message,
            )
            self.last_result = result
            return result

    # ---- incremental ----
    def recompute_location(self, location_id: int, year: int) -> RecomputeResult:
        """Stage 3 only, for one new or changed location."""
        t0 = time.perf_counter()
        location = self.locations.get_location(location_id)
        if location is None:
            return RecomputeResult(success=False, location_id=location_id, year=year, error="location not found")

        if self.store.count_snapshots(year) == 0:
            return RecomputeResult(
                success=False,
                location_id=location_id,
                year=year,
                time_ms=_ms(t0),
                error=f"no stage1 data for {year}; run precompute_year first",
            )

        self._acquire()
        try:
            outcome = self.matcher.match_location(year, location)
        except FujiCalError as e:
            log.warning("recompute location %s (%d) failed: %s", location_id, year, e)
            return RecomputeResult(success=False, location_id=location_id, year=year, time_ms=_ms(t0), error=str(e))
        finally:
            self._lock.release()

        log.info("recompute location %s (%d): events=%d", location_id, year, outcome.events)
        return RecomputeResult(
            success=True,
            location_id=location_id,
            year=year,
            event_count=outcome.events,
            time_ms=_ms(t0),
        )

    def clear_location(self, location_id: int, year: Optional[int] = None) -> int:
        """Remove a deleted location's events."""
        return self.matcher.clear_location_events(location_id, year)

    def has_precomputed(self, location_id: int, year: int) -> bool:
        return (
            self.store.get_checkpoint(STAGE3, year) is not None
            and self.store.get_checkpoint(location_stage(location_id), year) is not None
        )

    # ---- direct path ----
    def compute_day_events(self, day: date, location: ObserverLocation) -> List[FujiEvent]:
        """AlignmentSearch for one date, no precomputed data involved."""
        return self.alignment.day_events(day, location)

    def day_events(self, day: date, location: ObserverLocation) -> List[FujiEvent]:
        """
        Events dated `day` for a location: precomputed rows when Stage 3 has
        completed for the year and has matched this location, otherwise the
        direct computation.
        """
        if self.has_precomputed(location.id, day.year):
            return self.store.query_events(day.year, location_id=location.id, start=day, end=day)

        log.debug("no precomputed events for location %s in %d, computing %s directly", location.id, day.year, day)
        # moonrise windows of the previous day run past midnight
        events = self.compute_day_events(day - timedelta(days=1), location)
        events += self.compute_day_events(day, location)
        seen = set()
        out = []
        for e in sorted(events, key=lambda e: e.instant):
            key = (e.phenomenon_type, e.instant)
            if e.date == day and key not in seen:
                seen.add(key)
                out.append(e)
        return out

    # ---- health / statistics ----
    def expected_snapshot_rows(self, year: int) -> int:
        per_day = (24 * 60) // self.config.snapshots.step_minutes
        return days_in_year(year) * per_day * 2

    def health_check(self, year: int) -> HealthReport:
        checks: List[HealthCheckItem] = []
        recs: List[str] = []

        expected = self.expected_snapshot_rows(year)
        s1 = self.store.count_snapshots(year)
        checks.append(
            HealthCheckItem(
                stage="stage1",
                ok=s1 == expected,
                actual=s1,
                expected=expected,
                detail=f"{s1}/{expected} snapshot rows",
            )
        )
        if s1 == 0:
            recs.append(f"Stage 1 has no data for {year}: run precompute_year({year}).")
        elif s1 < expected:
            recs.append(
                f"Stage 1 is incomplete for {year} ({s1}/{expected}): "
                f"run precompute_year({year}, resume=True) or a full regeneration."
            )
        elif s1 > expected:
            recs.append(f"Stage 1 has more rows than expected for {year} ({s1}/{expected}): regenerate the year.")

        s2 = self.store.count_candidates(year)
        checks.append(HealthCheckItem(stage="stage2", ok=s2 > 0, actual=s2, expected=1, detail=f"{s2} candidates"))
        if s2 == 0:
            recs.append(f"Stage 2 has no candidates for {year}: run execute_from_stage2({year}).")

        loc_ids = {loc.id for loc in self.locations.list_locations()}
        with_events = self.store.event_location_ids(year) & loc_ids
        coverage = len(with_events) / len(loc_ids) if loc_ids else 0.0
        threshold = self.config.orchestrator.min_location_coverage
        checks.append(
            HealthCheckItem(
                stage="stage3",
                ok=coverage >= threshold,
                actual=round(coverage, 4),
                expected=threshold,
                detail=f"{len(with_events)}/{len(loc_ids)} locations have events",
            )
        )
        if not loc_ids:
            recs.append("No observation locations are registered.")
        elif coverage < threshold:
            recs.append(
                f"Stage 3 covers {coverage:.0%} of locations (< {threshold:.0%}): "
                f"run execute_from_stage2({year}) or recompute_location for missing locations."
            )

        healthy = all(c.ok for c in checks)
        if not recs:
            recs.append(HEALTHY_MESSAGE)
        log.info("health %d: healthy=%s", year, healthy)
        return HealthReport(healthy=healthy, year=year, checks=checks, recommendations=recs)

    def statistics(self, year: int) -> YearStatistics:
        events = self.store.query_events(year)
        by_type = Counter(e.phenomenon_type for e in events)
        by_tier = Counter(e.accuracy_tier for e in events)
        by_month = Counter(e.date.month for e in events)
        avg = round(sum(e.quality_score for e in events) / len(events), 4) if events else None
        return YearStatistics(
            year=year,
            snapshots=self.store.count_snapshots(year),
            candidates=self.store.count_candidates(year),
            events=len(events),
            locations_with_events=len({e.location_id for e in events}),
            by_type=dict(by_type),
            by_tier={t: by_tier.get(t, 0) for t in TIER_ORDER},
            by_month=dict(sorted(by_month.items())),
            average_quality=avg,
        )


def _detail(res: Any) -> Dict[str, Any]:
    """Small JSON-friendly summary of a stage result."""
    out: Dict[str, Any] = {}
    for k in ("skipped_samples", "chunks", "scanned", "diamond", "pearl", "locations", "matched_locations"):
        if hasattr(res, k):
            out[k] = getattr(res, k)
    failed_days = getattr(res, "failed_days", None)
    if failed_days:
        out["failed_days"] = [d.isoformat() for d in failed_days]
    failed = getattr(res, "failed", None)
    if failed:
        out["failed_locations"] = list(failed)
    return out
