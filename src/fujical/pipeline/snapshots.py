# src/fujical/pipeline/snapshots.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from fujical.core.astronomy import BodyPosition, CelestialEngine, MoonPhase
from fujical.core.config import SnapshotConfig
from fujical.core.errors import ProviderUnavailable, StageCancelled
from fujical.core.models import OrbitSnapshot
from fujical.core.timeutil import iter_dates, jst_day_samples, year_bounds

from .store import FujiStore

log = logging.getLogger(__name__)

STAGE1 = "stage1"


@dataclass(frozen=True)
class SnapshotSummary:
    year: int
    total: int
    skipped_samples: int
    failed_days: Tuple[date, ...]
    chunks: int
    resumed_from: Optional[date] = None


@dataclass(frozen=True)
class _DayResult:
    day: date
    rows: List[OrbitSnapshot]
    skipped: int


def _chunks(days: Sequence[date], size: int) -> List[Sequence[date]]:
    if size <= 0:
        raise ValueError("chunk_days must be positive")
    return [days[i : i + size] for i in range(0, len(days), size)]


def check_cancel(cancel: Optional[threading.Event], where: str) -> None:
    if cancel is not None and cancel.is_set():
        raise StageCancelled(f"cancelled at {where}")


@dataclass(frozen=True)
class OrbitSnapshotGenerator:
    """
    Stage 1: Sun/Moon alt-az at every 5-minute JST boundary of a year, seen
    from a fixed reference point (the summit). No location dependency.
    """

    engine: CelestialEngine
    store: FujiStore
    config: SnapshotConfig = field(default_factory=SnapshotConfig)

    # ---- per-sample fallback ----
    def _positions(self, body: str, instants: List[datetime]) -> List[Optional[BodyPosition]]:
        ref = self.config.reference
        try:
            return list(self.engine.positions_many(body, instants, ref))
        except ProviderUnavailable as e:
            log.warning("%s batch failed on %s, falling back per sample: %s", body, instants[0].date(), e)

        out: List[Optional[BodyPosition]] = []
        for t in instants:
            try:
                out.append(self.engine.position(body, t, ref))
            except ProviderUnavailable as e:
                log.debug("%s sample skipped at %s: %s", body, t.isoformat(), e)
                out.append(None)
        return out

    def _phases(self, instants: List[datetime]) -> List[Optional[MoonPhase]]:
        try:
            return list(self.engine.moon_phases_many(instants))
        except ProviderUnavailable as e:
            log.warning("moon phase batch failed on %s, falling back per sample: %s", instants[0].date(), e)

        out: List[Optional[MoonPhase]] = []
        for t in instants:
            try:
                out.append(self.engine.moon_phase(t))
            except ProviderUnavailable as e:
                log.debug("moon phase sample skipped at %s: %s", t.isoformat(), e)
                out.append(None)
        return out

    def day_snapshots(self, day: date, year: Optional[int] = None) -> _DayResult:
        """All snapshots for one JST day (288 per body at 5-minute steps)."""
        y = day.year if year is None else year
        cfg = self.config
        instants = jst_day_samples(day, cfg.step_minutes)

        sun = self._positions("sun", instants)
        moon = self._positions("moon", instants)
        phases = self._phases(instants)

        rows: List[OrbitSnapshot] = []
        skipped = 0
        for t, s, m, ph in zip(instants, sun, moon, phases):
            if s is None:
                skipped += 1
            else:
                rows.append(
                    OrbitSnapshot(
                        year=y,
                        instant=t,
                        date=day,
                        body="sun",
                        azimuth=s.azimuth,
                        elevation=s.elevation,
                        visible=s.elevation > cfg.sun_visible_elevation,
                    )
                )
            if m is None or ph is None:
                skipped += 1
            else:
                rows.append(
                    OrbitSnapshot(
                        year=y,
                        instant=t,
                        date=day,
                        body="moon",
                        azimuth=m.azimuth,
                        elevation=m.elevation,
                        visible=m.elevation > cfg.moon_visible_elevation,
                        moon_phase=ph.phase_deg,
                        moon_illumination=ph.illuminated_fraction,
                    )
                )
        return _DayResult(day=day, rows=rows, skipped=skipped)

    def _write(self, rows: List[OrbitSnapshot]) -> int:
        n = 0
        bs = max(1, self.config.batch_size)
        for i in range(0, len(rows), bs):
            n += self.store.insert_snapshots(rows[i : i + bs])
        return n

    def _run_chunk(self, chunk: Sequence[date], year: int, cancel: Optional[threading.Event]) -> List[_DayResult]:
        def one(day: date) -> _DayResult:
            check_cancel(cancel, f"{STAGE1} day {day}")
            return self.day_snapshots(day, year)

        workers = max(1, self.config.workers)
        if workers == 1:
            return [one(d) for d in chunk]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map keeps date order
            return list(executor.map(one, chunk))

    def generate(
        self,
        year: int,
        *,
        resume: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> SnapshotSummary:
        """
        Regenerate the year's snapshots.

        resume=True continues after the last completed chunk recorded by a
        previous (failed or cancelled) run instead of clearing the year.
        """
        first, last = year_bounds(year)
        start = first
        resumed_from: Optional[date] = None

        checkpoint = self.store.get_checkpoint(STAGE1, year) if resume else None
        if checkpoint is not None:
            resumed_from = checkpoint
            start = checkpoint + timedelta(days=1)
            # rows of a chunk that failed mid-write
            partial = self.store.delete_snapshots(year, after=checkpoint)
            log.info("stage1 %d: resuming after %s (dropped %d partial rows)", year, checkpoint, partial)
        else:
            removed = self.store.delete_snapshots(year)
            self.store.clear_checkpoint(STAGE1, year)
            log.info("stage1 %d: cleared %d rows", year, removed)

        days = list(iter_dates(start, last))
        chunks = _chunks(days, self.config.chunk_days)

        total = 0
        skipped = 0
        failed: List[date] = []
        for idx, chunk in enumerate(chunks, start=1):
            check_cancel(cancel, f"{STAGE1} chunk {chunk[0]}")
            results = self._run_chunk(chunk, year, cancel)

            rows: List[OrbitSnapshot] = []
            for r in results:
                skipped += r.skipped
                if not r.rows:
                    log.warning("stage1 %d: no snapshots for %s", year, r.day)
                    failed.append(r.day)
                rows.extend(r.rows)

            if not rows:
                raise ProviderUnavailable(f"no snapshots produced for {chunk[0]}..{chunk[-1]}")

            total += self._write(rows)
            self.store.set_checkpoint(STAGE1, year, chunk[-1])
            log.info(
                "stage1 %d: chunk %d/%d %s..%s rows=%d total=%d",
                year,
                idx,
                len(chunks),
                chunk[0],
                chunk[-1],
                len(rows),
                total,
            )

        if resumed_from is not None:
            total = self.store.count_snapshots(year)

        return SnapshotSummary(
            year=year,
            total=total,
            skipped_samples=skipped,
            failed_days=tuple(failed),
            chunks=len(chunks),
            resumed_from=resumed_from,
        )
