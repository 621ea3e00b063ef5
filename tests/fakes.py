from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import List, Optional, Sequence, Set

from fujical.core.astronomy import BodyPosition, CelestialEngine, MoonPhase
from fujical.core.config import FujiCalConfig
from fujical.core.models import ObserverLocation
from fujical.core.timeutil import JST

YEAR = 2026

# 富士山の東 (bearing ~270, ~43 km) / 西 (bearing ~90)
EAST_OF_FUJI = (35.3606, 139.2, 10.0)
WEST_OF_FUJI = (35.3606, 138.2, 10.0)


def _jst_hours(dt: datetime) -> float:
    local = dt.astimezone(JST)
    return local.hour + local.minute / 60.0 + local.second / 3600.0


@dataclass
class LinearSky:
    """
    Fake sky. Each body sweeps 15 deg/h of azimuth and loses 10 deg/h of
    elevation, passing exactly through (bearing, elevation) at its JST hour
    every day. Scalar methods only, so CelestialEngine loops.
    """

    bearing: float
    elevation: float
    sun_hour: float = 17.0
    moon_hour: float = 5.0
    illumination: float = 0.9
    fail_from: Optional[date] = None
    fail_days: Set[date] = field(default_factory=set)
    calls: int = 0

    def _check(self, dt: datetime) -> None:
        self.calls += 1
        d = dt.astimezone(JST).date()
        if d in self.fail_days or (self.fail_from is not None and d >= self.fail_from):
            raise RuntimeError(f"ephemeris gap at {dt.isoformat()}")

    def _pos(self, hour: float, dt: datetime) -> BodyPosition:
        self._check(dt)
        dh = _jst_hours(dt) - hour
        return BodyPosition(
            azimuth=self.bearing + 15.0 * dh,
            elevation=self.elevation - 10.0 * dh,
            distance_km=384_400.0,
        )

    def sun_position(self, dt_utc, latitude, longitude, elevation_m) -> BodyPosition:
        return self._pos(self.sun_hour, dt_utc)

    def moon_position(self, dt_utc, latitude, longitude, elevation_m) -> BodyPosition:
        return self._pos(self.moon_hour, dt_utc)

    def moon_phase(self, dt_utc) -> MoonPhase:
        self._check(dt_utc)
        return MoonPhase(phase_deg=180.0, illuminated_fraction=self.illumination)


@dataclass
class BatchFailingSky(LinearSky):
    """Vectorized calls always fail; per-sample calls work."""

    def sun_positions_many(self, dts_utc: Sequence[datetime], latitude, longitude, elevation_m) -> List[BodyPosition]:
        raise RuntimeError("batch unavailable")

    def moon_positions_many(self, dts_utc: Sequence[datetime], latitude, longitude, elevation_m) -> List[BodyPosition]:
        raise RuntimeError("batch unavailable")

    def moon_phases_many(self, dts_utc: Sequence[datetime]) -> List[MoonPhase]:
        raise RuntimeError("batch unavailable")


@dataclass
class ScriptedSky:
    """
    One body crosses (azimuth, elevation) exactly at `at`, moving linearly;
    the other stays far below the northern horizon.
    """

    body: str
    at: datetime
    azimuth: float
    elevation: float
    illumination: float = 1.0
    az_rate: float = 0.2  # deg/min
    el_rate: float = 0.15  # deg/min

    def _pos(self, body: str, dt: datetime) -> BodyPosition:
        if body != self.body:
            return BodyPosition(azimuth=0.0, elevation=-45.0, distance_km=1.0)
        m = (dt - self.at).total_seconds() / 60.0
        return BodyPosition(
            azimuth=self.azimuth + self.az_rate * m,
            elevation=self.elevation + self.el_rate * m,
            distance_km=1.0,
        )

    def sun_position(self, dt_utc, latitude, longitude, elevation_m) -> BodyPosition:
        return self._pos("sun", dt_utc)

    def moon_position(self, dt_utc, latitude, longitude, elevation_m) -> BodyPosition:
        return self._pos("moon", dt_utc)

    def moon_phase(self, dt_utc) -> MoonPhase:
        return MoonPhase(phase_deg=180.0, illuminated_fraction=self.illumination)


def jst(y: int, m: int, d: int, hh: int = 0, mm: int = 0, ss: int = 0) -> datetime:
    return datetime(y, m, d, hh, mm, ss, tzinfo=JST)


def make_location(id: int = 1, coords=EAST_OF_FUJI, name: str = "test") -> ObserverLocation:
    lat, lon, elev = coords
    return ObserverLocation.create(id, name, lat, lon, elev)


def hourly_config(**kw) -> FujiCalConfig:
    """Hourly Stage-1 samples, no refraction; keeps year runs small."""
    cfg = FujiCalConfig(apply_refraction=False)
    return replace(cfg, snapshots=replace(cfg.snapshots, step_minutes=60), **kw)


def geometric_engine(provider) -> CelestialEngine:
    return CelestialEngine(provider=provider, apply_refraction=False)


