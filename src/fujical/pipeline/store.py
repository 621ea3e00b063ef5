# src/fujical/pipeline/store.py
from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple, runtime_checkable

from fujical.core.geo import norm360
from fujical.core.models import FujiCandidateWindow, FujiEvent, OrbitSnapshot

# (low, high) degrees; low > high wraps through north
AzimuthRange = Tuple[float, float]
ValueRange = Tuple[float, float]


def azimuth_range_around(center: float, tolerance: float) -> AzimuthRange:
    if tolerance >= 180.0:
        return (0.0, 360.0)
    return (norm360(center - tolerance), norm360(center + tolerance))


def in_azimuth_range(azimuth: float, rng: AzimuthRange) -> bool:
    lo, hi = rng
    if lo <= hi:
        return lo <= azimuth <= hi
    return azimuth >= lo or azimuth <= hi


def _in_range(x: float, rng: ValueRange) -> bool:
    return rng[0] <= x <= rng[1]


def _in_dates(d: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and d < start:
        return False
    if end is not None and d > end:
        return False
    return True


@runtime_checkable
class FujiStore(Protocol):
    """
    Year-scoped persistence for the three stages.

    All queries are bounded by `year`; dates are inclusive JST dates.
    """

    # ---- stage 1 ----
    def delete_snapshots(self, year: int, after: Optional[date] = None) -> int: ...
    def insert_snapshots(self, rows: Sequence[OrbitSnapshot]) -> int: ...
    def count_snapshots(self, year: int, body: Optional[str] = None) -> int: ...
    def query_snapshots(
        self,
        year: int,
        *,
        body: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        azimuth: Optional[AzimuthRange] = None,
        elevation: Optional[ValueRange] = None,
        min_illumination: Optional[float] = None,
    ) -> List[OrbitSnapshot]: ...

    # ---- stage 2 ----
    def delete_candidates(self, year: int) -> int: ...
    def insert_candidates(self, rows: Sequence[FujiCandidateWindow]) -> int: ...
    def count_candidates(self, year: int) -> int: ...
    def query_candidates(
        self,
        year: int,
        *,
        body: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[FujiCandidateWindow]: ...

    # ---- stage 3 ----
    def delete_events(self, year: Optional[int] = None, location_id: Optional[int] = None) -> int: ...
    def insert_events(self, rows: Sequence[FujiEvent]) -> int: ...
    def count_events(self, year: int, location_id: Optional[int] = None) -> int: ...
    def query_events(
        self,
        year: int,
        *,
        location_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[FujiEvent]: ...
    def event_location_ids(self, year: int) -> Set[int]: ...

    # ---- checkpoints ----
    def get_checkpoint(self, stage: str, year: int) -> Optional[date]: ...
    def set_checkpoint(self, stage: str, year: int, value: date) -> None: ...
    def clear_checkpoint(self, stage: str, year: int) -> None: ...


@dataclass
class MemoryStore:
    """In-process store. Thread-safe; used by tests and one-shot CLI runs."""

    _snapshots: Dict[int, List[OrbitSnapshot]] = field(default_factory=lambda: defaultdict(list))
    _candidates: Dict[int, List[FujiCandidateWindow]] = field(default_factory=lambda: defaultdict(list))
    _events: Dict[int, List[FujiEvent]] = field(default_factory=lambda: defaultdict(list))
    _checkpoints: Dict[Tuple[str, int], date] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock)

    # ---- stage 1 ----
    def delete_snapshots(self, year: int, after: Optional[date] = None) -> int:
        """Drop the year's rows, or only those dated after `after`."""
        with self._lock:
            if after is None:
                return len(self._snapshots.pop(year, []))
            rows = self._snapshots.get(year, [])
            keep = [r for r in rows if r.date <= after]
            self._snapshots[year] = keep
            return len(rows) - len(keep)

    def insert_snapshots(self, rows: Sequence[OrbitSnapshot]) -> int:
        with self._lock:
            for r in rows:
                self._snapshots[r.year].append(r)
        return len(rows)

    def count_snapshots(self, year: int, body: Optional[str] = None) -> int:
        with self._lock:
            rows = self._snapshots.get(year, [])
            if body is None:
                return len(rows)
            return sum(1 for r in rows if r.body == body)

    def query_snapshots(
        self,
        year: int,
        *,
        body: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        azimuth: Optional[AzimuthRange] = None,
        elevation: Optional[ValueRange] = None,
        min_illumination: Optional[float] = None,
    ) -> List[OrbitSnapshot]:
        with self._lock:
            rows = list(self._snapshots.get(year, []))
        out = []
        for r in rows:
            if body is not None and r.body != body:
                continue
            if not _in_dates(r.date, start, end):
                continue
            if azimuth is not None and not in_azimuth_range(r.azimuth, azimuth):
                continue
            if elevation is not None and not _in_range(r.elevation, elevation):
                continue
            if min_illumination is not None and (r.moon_illumination is None or r.moon_illumination < min_illumination):
                continue
            out.append(r)
        out.sort(key=lambda r: (r.instant, r.body))
        return out

    # ---- stage 2 ----
    def delete_candidates(self, year: int) -> int:
        with self._lock:
            return len(self._candidates.pop(year, []))

    def insert_candidates(self, rows: Sequence[FujiCandidateWindow]) -> int:
        with self._lock:
            for r in rows:
                self._candidates[r.year].append(r)
        return len(rows)

    def count_candidates(self, year: int) -> int:
        with self._lock:
            return len(self._candidates.get(year, []))

    def query_candidates(
        self,
        year: int,
        *,
        body: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[FujiCandidateWindow]:
        with self._lock:
            rows = list(self._candidates.get(year, []))
        out = [r for r in rows if (body is None or r.body == body) and _in_dates(r.date, start, end)]
        out.sort(key=lambda r: (r.instant, r.body))
        return out

    # ---- stage 3 ----
    def delete_events(self, year: Optional[int] = None, location_id: Optional[int] = None) -> int:
        removed = 0
        with self._lock:
            years = [year] if year is not None else list(self._events.keys())
            for y in years:
                rows = self._events.get(y, [])
                keep = [r for r in rows if location_id is not None and r.location_id != location_id]
                removed += len(rows) - len(keep)
                if keep:
                    self._events[y] = keep
                else:
                    self._events.pop(y, None)
        return removed

    def insert_events(self, rows: Sequence[FujiEvent]) -> int:
        with self._lock:
            for r in rows:
                self._events[r.date.year].append(r)
        return len(rows)

    def count_events(self, year: int, location_id: Optional[int] = None) -> int:
        with self._lock:
            rows = self._events.get(year, [])
            return sum(1 for r in rows if location_id is None or r.location_id == location_id)

    def query_events(
        self,
        year: int,
        *,
        location_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[FujiEvent]:
        with self._lock:
            rows = list(self._events.get(year, []))
        out = [
            r
            for r in rows
            if (location_id is None or r.location_id == location_id) and _in_dates(r.date, start, end)
        ]
        out.sort(key=lambda r: (r.instant, r.location_id))
        return out

    def event_location_ids(self, year: int) -> Set[int]:
        with self._lock:
            return {r.location_id for r in self._events.get(year, [])}

    # ---- checkpoints ----
    def get_checkpoint(self, stage: str, year: int) -> Optional[date]:
        with self._lock:
            return self._checkpoints.get((stage, year))

    def set_checkpoint(self, stage: str, year: int, value: date) -> None:
        with self._lock:
            self._checkpoints[(stage, year)] = value

    def clear_checkpoint(self, stage: str, year: int) -> None:
        with self._lock:
            self._checkpoints.pop((stage, year), None)
