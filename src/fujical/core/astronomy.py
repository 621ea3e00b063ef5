# src/fujical/core/astronomy.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Protocol, Sequence, TypeVar, runtime_checkable

from .errors import FujiCalError, ProviderUnavailable
from .geo import GeoPoint, atmospheric_refraction, norm360
from .timeutil import as_utc

T = TypeVar("T")


@dataclass(frozen=True)
class BodyPosition:
    azimuth: float  # degrees, 0=N clockwise
    elevation: float  # degrees
    distance_km: float


@dataclass(frozen=True)
class MoonPhase:
    phase_deg: float  # 0=new, 180=full
    illuminated_fraction: float  # 0..1


@runtime_checkable
class CelestialPositionProvider(Protocol):
    """
    Ephemeris boundary. Elevations are geometric (no atmospheric refraction);
    CelestialEngine applies refraction itself.
    """

    # baseline
    def sun_position(self, dt_utc: datetime, latitude: float, longitude: float, elevation_m: float) -> BodyPosition: ...
    def moon_position(self, dt_utc: datetime, latitude: float, longitude: float, elevation_m: float) -> BodyPosition: ...
    def moon_phase(self, dt_utc: datetime) -> MoonPhase: ...

    # optional vectorized batch
    def sun_positions_many(
        self, dts_utc: Sequence[datetime], latitude: float, longitude: float, elevation_m: float
    ) -> List[BodyPosition]: ...
    def moon_positions_many(
        self, dts_utc: Sequence[datetime], latitude: float, longitude: float, elevation_m: float
    ) -> List[BodyPosition]: ...
    def moon_phases_many(self, dts_utc: Sequence[datetime]) -> List[MoonPhase]: ...


def _guard(what: str, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except FujiCalError:
        raise
    except Exception as e:
        raise ProviderUnavailable(f"{what}: {type(e).__name__}: {e}") from e


@dataclass(frozen=True)
class CelestialEngine:
    provider: CelestialPositionProvider
    apply_refraction: bool = True

    def _apparent(self, p: BodyPosition) -> BodyPosition:
        elev = float(p.elevation)
        if self.apply_refraction:
            elev = elev + atmospheric_refraction(elev)
        return BodyPosition(azimuth=norm360(float(p.azimuth)), elevation=elev, distance_km=float(p.distance_km))

    def position(self, body: str, dt: datetime, observer: GeoPoint) -> BodyPosition:
        """Apparent alt-az of `body` ("sun" | "moon") at dt for observer."""
        t = as_utc(dt)
        f = self.provider.sun_position if body == "sun" else self.provider.moon_position
        p = _guard(
            f"{body} position at {t.isoformat()}",
            lambda: f(t, observer.latitude, observer.longitude, observer.elevation),
        )
        return self._apparent(p)

    def positions_many(self, body: str, dts: Sequence[datetime], observer: GeoPoint) -> List[BodyPosition]:
        """
        Vectorized positions if the provider supports it; otherwise fall back to loop.
        """
        if not dts:
            return []
        ts = [as_utc(dt) for dt in dts]
        f = getattr(self.provider, f"{body}_positions_many", None)
        if callable(f):
            xs = _guard(
                f"{body} positions {ts[0].isoformat()}..{ts[-1].isoformat()}",
                lambda: f(ts, observer.latitude, observer.longitude, observer.elevation),
            )
            if len(xs) != len(ts):
                raise ProviderUnavailable(f"{body} positions: expected {len(ts)} results, got {len(xs)}")
            return [self._apparent(p) for p in xs]
        return [self.position(body, t, observer) for t in ts]

    def moon_phase(self, dt: datetime) -> MoonPhase:
        t = as_utc(dt)
        m = _guard(f"moon phase at {t.isoformat()}", lambda: self.provider.moon_phase(t))
        return MoonPhase(phase_deg=norm360(float(m.phase_deg)), illuminated_fraction=float(m.illuminated_fraction))

    def moon_phases_many(self, dts: Sequence[datetime]) -> List[MoonPhase]:
        if not dts:
            return []
        ts = [as_utc(dt) for dt in dts]
        f = getattr(self.provider, "moon_phases_many", None)
        if callable(f):
            xs = _guard(f"moon phases {ts[0].isoformat()}..{ts[-1].isoformat()}", lambda: f(ts))
            if len(xs) != len(ts):
                raise ProviderUnavailable(f"moon phases: expected {len(ts)} results, got {len(xs)}")
            return [
                MoonPhase(phase_deg=norm360(float(m.phase_deg)), illuminated_fraction=float(m.illuminated_fraction))
                for m in xs
            ]
        return [self.moon_phase(t) for t in ts]
