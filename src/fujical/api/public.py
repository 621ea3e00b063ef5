from __future__ import annotations

import logging
import os
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from fujical.core.alignment import AlignmentSearch
from fujical.core.astronomy import CelestialEngine
from fujical.core.config import FujiCalConfig
from fujical.core.models import FujiEvent, ObserverLocation
from fujical.core.providers.skyfield_provider import SkyfieldProvider
from fujical.core.timeutil import JST
from fujical.pipeline.locations import StaticLocationRepository, load_locations_json
from fujical.pipeline.orchestrator import Orchestrator
from fujical.pipeline.sql_store import SqlStore

log = logging.getLogger("fujical.api.public")

FUJICAL_EPHEMERIS_ENV = "FUJICAL_EPHEMERIS"
FUJICAL_EPHEMERIS_PATH_ENV = "FUJICAL_EPHEMERIS_PATH"
FUJICAL_DB_URL_ENV = "FUJICAL_DB_URL"
DEFAULT_DB_URL = "sqlite:///data/fujical.sqlite"


# ============================================================
# Response Models
# ============================================================
class FujiEventOut(BaseModel):
    location_id: int
    date: date
    phenomenon_type: str
    instant_utc: datetime
    instant_local: datetime = Field(description="instant in JST")
    azimuth: float
    elevation: float
    azimuth_diff: float
    elevation_diff: float
    total_diff: float
    accuracy_tier: str
    quality_score: float
    moon_phase: Optional[float] = None
    moon_illumination: Optional[float] = None


class DayEventsResponse(BaseModel):
    date: date
    latitude: float
    longitude: float
    elevation: float
    fuji_bearing: float
    fuji_elevation: float
    fuji_distance_km: float
    events: List[FujiEventOut] = Field(default_factory=list)


def event_to_out(e: FujiEvent) -> FujiEventOut:
    return FujiEventOut(
        location_id=e.location_id,
        date=e.date,
        phenomenon_type=e.phenomenon_type,
        instant_utc=e.instant,
        instant_local=e.instant.astimezone(JST),
        azimuth=round(e.azimuth, 4),
        elevation=round(e.elevation, 4),
        azimuth_diff=round(e.azimuth_diff, 4),
        elevation_diff=round(e.elevation_diff, 4),
        total_diff=round(e.total_diff, 4),
        accuracy_tier=e.accuracy_tier,
        quality_score=round(e.quality_score, 4),
        moon_phase=None if e.moon_phase is None else round(e.moon_phase, 2),
        moon_illumination=None if e.moon_illumination is None else round(e.moon_illumination, 4),
    )


# ============================================================
# Engine cache (important)
# ============================================================
def _resolve_ephemeris(
    ephemeris: Optional[str],
    ephemeris_path: Optional[str | Path],
) -> Tuple[str, str]:
    ephem = (ephemeris or "").strip() or os.environ.get(FUJICAL_EPHEMERIS_ENV, "").strip()
    path = str(ephemeris_path or "").strip() or os.environ.get(FUJICAL_EPHEMERIS_PATH_ENV, "").strip()
    return ephem, path


@lru_cache(maxsize=4)
def _provider_cached(ephemeris: str, ephemeris_path: str) -> SkyfieldProvider:
    """
    SkyfieldProvider は重いので使い回す。
    """
    return SkyfieldProvider(
        ephemeris=ephemeris or None,
        ephemeris_path=Path(ephemeris_path).expanduser() if ephemeris_path else None,
    )


def _engine(ephemeris: Optional[str] = None, ephemeris_path: Optional[str | Path] = None) -> CelestialEngine:
    provider = _provider_cached(*_resolve_ephemeris(ephemeris, ephemeris_path))
    return CelestialEngine(provider=provider, apply_refraction=FujiCalConfig().apply_refraction)


@lru_cache(maxsize=4)
def _store_cached(db_url: str) -> SqlStore:
    return SqlStore(db_url)


def get_orchestrator(
    *,
    locations_path: Optional[str | Path] = None,
    db_url: Optional[str] = None,
    ephemeris: Optional[str] = None,
    ephemeris_path: Optional[str | Path] = None,
    config: Optional[FujiCalConfig] = None,
) -> Orchestrator:
    url = (db_url or "").strip() or os.environ.get(FUJICAL_DB_URL_ENV, "").strip() or DEFAULT_DB_URL
    locations = load_locations_json(locations_path) if locations_path else StaticLocationRepository()
    cfg = config or FujiCalConfig()
    return Orchestrator(
        engine=_engine(ephemeris, ephemeris_path),
        store=_store_cached(url),
        locations=locations,
        config=cfg,
    )


# =========================================================
# Public JSON API (function-style)
# =========================================================
def _parse_date_any(x: str | date) -> date:
    if isinstance(x, date):
        return x
    try:
        return date.fromisoformat(str(x))
    except ValueError as e:
        raise ValueError(f"Invalid date format: {x} (expected YYYY-MM-DD)") from e


def compute_day_events(
    day: str | date,
    *,
    latitude: float,
    longitude: float,
    elevation: float = 0.0,
    location_id: int = 0,
    ephemeris: Optional[str] = None,
    ephemeris_path: Optional[str | Path] = None,
) -> Dict[str, Any]:
    """Direct-path events for an arbitrary point (no precomputation)."""
    target = _parse_date_any(day)
    location = ObserverLocation.create(location_id, "", latitude, longitude, elevation)
    search = AlignmentSearch(_engine(ephemeris, ephemeris_path), FujiCalConfig().alignment)
    events = search.day_events(target, location)
    res = DayEventsResponse(
        date=target,
        latitude=latitude,
        longitude=longitude,
        elevation=elevation,
        fuji_bearing=round(float(location.fuji_bearing), 4),
        fuji_elevation=round(float(location.fuji_elevation), 4),
        fuji_distance_km=round(location.fuji_distance_km, 3),
        events=[event_to_out(e) for e in events],
    )
    return res.model_dump(mode="json")


def precompute_year(year: int, **kwargs: Any) -> Dict[str, Any]:
    return get_orchestrator(**kwargs).precompute_year(year).model_dump(mode="json")


def recompute_location(location_id: int, year: int, **kwargs: Any) -> Dict[str, Any]:
    return get_orchestrator(**kwargs).recompute_location(location_id, year).model_dump(mode="json")


def health_check(year: int, **kwargs: Any) -> Dict[str, Any]:
    return get_orchestrator(**kwargs).health_check(year).model_dump(mode="json")


def year_statistics(year: int, **kwargs: Any) -> Dict[str, Any]:
    return get_orchestrator(**kwargs).statistics(year).model_dump(mode="json")
