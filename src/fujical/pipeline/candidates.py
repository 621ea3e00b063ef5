# src/fujical/pipeline/candidates.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from fujical.core.config import CandidateConfig
from fujical.core.geo import azimuth_distance
from fujical.core.models import FujiCandidateWindow, OrbitSnapshot, phenomenon_for
from fujical.core.timeutil import day_part_of, jst_hour_of, year_bounds

from .store import FujiStore, in_azimuth_range

log = logging.getLogger(__name__)

STAGE2 = "stage2"


@dataclass(frozen=True)
class CandidateSummary:
    year: int
    scanned: int
    diamond: int
    pearl: int

    @property
    def total(self) -> int:
        return self.diamond + self.pearl


def _band_center(band: Tuple[float, float]) -> float:
    lo, hi = band
    if lo <= hi:
        return (lo + hi) / 2.0
    return ((lo + hi + 360.0) / 2.0) % 360.0


@dataclass(frozen=True)
class CandidateFilter:
    """
    Stage 2: narrow Stage-1 snapshots to plausible Diamond/Pearl windows.

    Precision is deferred to Stage 3; this stage only keeps one sample per
    (date, phenomenon type, day part).
    """

    store: FujiStore
    config: CandidateConfig = field(default_factory=CandidateConfig)

    def band_of(self, azimuth: float) -> Optional[Tuple[bool, float]]:
        """(rising side?, band centre) for an azimuth inside a band, else None."""
        if in_azimuth_range(azimuth, self.config.east_band):
            return True, _band_center(self.config.east_band)
        if in_azimuth_range(azimuth, self.config.west_band):
            return False, _band_center(self.config.west_band)
        return None

    def _in_diamond_hours(self, row: OrbitSnapshot) -> bool:
        h = jst_hour_of(row.instant)
        return any(a <= h < b for a, b in self.config.diamond_hours)

    def classify(self, row: OrbitSnapshot) -> Optional[Tuple[FujiCandidateWindow, float]]:
        """Candidate for one snapshot plus its distance from the band centre, or None."""
        cfg = self.config
        if not cfg.min_elevation <= row.elevation <= cfg.max_elevation:
            return None
        band = self.band_of(row.azimuth)
        if band is None:
            return None
        rising, center = band

        if row.body == "sun":
            if not self._in_diamond_hours(row):
                return None
        else:
            if row.moon_illumination is None or row.moon_illumination < cfg.pearl_min_illumination:
                return None

        cand = FujiCandidateWindow(
            year=row.year,
            date=row.date,
            body=row.body,
            phenomenon_type=phenomenon_for(row.body, rising),
            azimuth=row.azimuth,
            elevation=row.elevation,
            instant=row.instant,
            day_part=day_part_of(row.instant),
            moon_illumination=row.moon_illumination,
        )
        return cand, azimuth_distance(row.azimuth, center)

    def filter_rows(self, rows: Iterable[OrbitSnapshot]) -> List[FujiCandidateWindow]:
        """Classify then keep the azimuth-closest-to-centre sample per (date, type, day part)."""
        best: Dict[Tuple[date, str, str], Tuple[float, FujiCandidateWindow]] = {}
        for row in rows:
            res = self.classify(row)
            if res is None:
                continue
            cand, off = res
            key = (cand.date, cand.phenomenon_type, cand.day_part)
            cur = best.get(key)
            if cur is None or (off, cand.instant) < (cur[0], cur[1].instant):
                best[key] = (off, cand)
        return sorted((c for _, c in best.values()), key=lambda c: (c.instant, c.body))

    def run(self, year: int) -> CandidateSummary:
        cfg = self.config
        removed = self.store.delete_candidates(year)
        self.store.clear_checkpoint(STAGE2, year)
        log.info("stage2 %d: cleared %d candidates", year, removed)

        first, last = year_bounds(year)
        step = timedelta(days=max(1, cfg.chunk_days))
        scanned = diamond = pearl = 0

        start = first
        while start <= last:
            end = min(last, start + step - timedelta(days=1))
            sun = self.store.query_snapshots(
                year, body="sun", start=start, end=end, elevation=(cfg.min_elevation, cfg.max_elevation)
            )
            moon = self.store.query_snapshots(
                year,
                body="moon",
                start=start,
                end=end,
                elevation=(cfg.min_elevation, cfg.max_elevation),
                min_illumination=cfg.pearl_min_illumination,
            )
            scanned += len(sun) + len(moon)

            cands = self.filter_rows([*sun, *moon])
            bs = max(1, cfg.batch_size)
            for i in range(0, len(cands), bs):
                self.store.insert_candidates(cands[i : i + bs])
            d = sum(1 for c in cands if c.body == "sun")
            diamond += d
            pearl += len(cands) - d
            log.debug("stage2 %d: %s..%s scanned=%d kept=%d", year, start, end, len(sun) + len(moon), len(cands))
            start = end + timedelta(days=1)

        self.store.set_checkpoint(STAGE2, year, last)
        log.info("stage2 %d: diamond=%d pearl=%d (scanned %d)", year, diamond, pearl, scanned)
        return CandidateSummary(year=year, scanned=scanned, diamond=diamond, pearl=pearl)
