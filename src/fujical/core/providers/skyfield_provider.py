from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from skyfield import almanac
from skyfield.api import Loader, wgs84

from ..astronomy import BodyPosition, MoonPhase
from ..errors import ProviderUnavailable
from ..timeutil import as_utc

log = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[4] / "data"
# longest coverage first
KNOWN_EPHEMERIDES = ("de440s.bsp", "de421.bsp")
ENV_EPHEMERIS_PATH = "FUJICAL_EPHEMERIS_PATH"


def find_ephemeris(
    ephemeris: Optional[Union[str, Path]] = None,
    ephemeris_path: Optional[Path] = None,
) -> Path:
    """
    Locate the SPK file.

    ephemeris_path wins; then `ephemeris` (bare names are looked up in data/);
    then $FUJICAL_EPHEMERIS_PATH; then the first of KNOWN_EPHEMERIDES in data/.
    """
    if ephemeris_path is not None:
        tried = [Path(ephemeris_path).expanduser()]
    elif ephemeris:
        p = Path(ephemeris).expanduser()
        tried = [p if p.is_absolute() else DATA_DIR / p]
    else:
        env = os.environ.get(ENV_EPHEMERIS_PATH, "").strip()
        tried = [Path(env).expanduser()] if env else []
        tried += [DATA_DIR / name for name in KNOWN_EPHEMERIDES]

    for p in tried:
        if p.exists():
            return p

    listed = "\n".join(f"  - {p}" for p in tried)
    raise FileNotFoundError(
        f"Ephemeris not found. Looked for:\n{listed}\n"
        f"Place de440s.bsp under {DATA_DIR}, pass ephemeris_path=Path(...), "
        f"or set {ENV_EPHEMERIS_PATH}."
    )


def _spk_coverage(eph, ts) -> Tuple[datetime, datetime]:
    segments = getattr(getattr(eph, "spk", None), "segments", None)
    if not segments:
        return datetime.min.replace(tzinfo=timezone.utc), datetime.max.replace(tzinfo=timezone.utc)
    first = ts.tt_jd(min(s.start_jd for s in segments)).utc_datetime()
    last = ts.tt_jd(max(s.end_jd for s in segments)).utc_datetime()
    return first, last


@lru_cache(maxsize=256)
def _site(latitude: float, longitude: float, elevation_m: float):
    return wgs84.latlon(latitude_degrees=latitude, longitude_degrees=longitude, elevation_m=elevation_m)


@dataclass(frozen=True)
class SkyfieldProvider:
    """
    Sun/Moon topocentric alt-az and lunar phase from a JPL ephemeris.

    Altitudes are airless; CelestialEngine adds refraction. Instants outside
    the ephemeris coverage raise ProviderUnavailable.
    """

    ephemeris_path: Optional[Path] = None
    ephemeris: Optional[Union[str, Path]] = None

    def __post_init__(self) -> None:
        path = find_ephemeris(self.ephemeris, self.ephemeris_path)
        loader = Loader(str(path.parent))
        eph = loader(path.name)
        ts = loader.timescale()

        object.__setattr__(self, "ephemeris_path", path)
        object.__setattr__(self, "_eph", eph)
        object.__setattr__(self, "_ts", ts)
        object.__setattr__(self, "_earth", eph["earth"])
        object.__setattr__(self, "_bodies", {"sun": eph["sun"], "moon": eph["moon"]})
        object.__setattr__(self, "_coverage", _spk_coverage(eph, ts))
        log.debug("ephemeris %s covers %s .. %s", path.name, *(d.date() for d in self._coverage))

    @property
    def coverage(self) -> Tuple[datetime, datetime]:
        return self._coverage

    # ---- time ----
    def _check_coverage(self, first: datetime, last: datetime) -> None:
        lo, hi = self._coverage
        if first < lo or last > hi:
            raise ProviderUnavailable(
                f"{first.isoformat()} .. {last.isoformat()} is outside {self.ephemeris_path.name} "
                f"coverage ({lo.date()} .. {hi.date()})"
            )

    def _time(self, dt_utc: datetime):
        t = as_utc(dt_utc, "dt_utc")
        self._check_coverage(t, t)
        return self._ts.from_datetime(t)

    def _times(self, dts_utc: Sequence[datetime]):
        xs = [as_utc(dt, "dts_utc") for dt in dts_utc]
        self._check_coverage(min(xs), max(xs))
        return self._ts.from_datetimes(xs)

    # ---- geometry ----
    def _altaz(self, body: str, t, latitude: float, longitude: float, elevation_m: float):
        observer = self._earth + _site(latitude, longitude, elevation_m)
        alt, az, distance = observer.at(t).observe(self._bodies[body]).apparent().altaz()
        return az.degrees, alt.degrees, distance.km

    def _one(self, body: str, dt_utc: datetime, latitude: float, longitude: float, elevation_m: float) -> BodyPosition:
        az, alt, km = self._altaz(body, self._time(dt_utc), latitude, longitude, elevation_m)
        return BodyPosition(azimuth=float(az), elevation=float(alt), distance_km=float(km))

    def _many(
        self, body: str, dts_utc: Sequence[datetime], latitude: float, longitude: float, elevation_m: float
    ) -> List[BodyPosition]:
        if not dts_utc:
            return []
        az, alt, km = self._altaz(body, self._times(dts_utc), latitude, longitude, elevation_m)
        return [BodyPosition(azimuth=float(a), elevation=float(e), distance_km=float(d)) for a, e, d in zip(az, alt, km)]

    def _phase(self, t):
        return almanac.moon_phase(self._eph, t).degrees, almanac.fraction_illuminated(self._eph, "moon", t)

    # ---- CelestialPositionProvider ----
    def sun_position(self, dt_utc: datetime, latitude: float, longitude: float, elevation_m: float) -> BodyPosition:
        return self._one("sun", dt_utc, latitude, longitude, elevation_m)

    def moon_position(self, dt_utc: datetime, latitude: float, longitude: float, elevation_m: float) -> BodyPosition:
        return self._one("moon", dt_utc, latitude, longitude, elevation_m)

    def moon_phase(self, dt_utc: datetime) -> MoonPhase:
        deg, frac = self._phase(self._time(dt_utc))
        return MoonPhase(phase_deg=float(deg), illuminated_fraction=float(frac))

    def sun_positions_many(
        self, dts_utc: Sequence[datetime], latitude: float, longitude: float, elevation_m: float
    ) -> List[BodyPosition]:
        return self._many("sun", dts_utc, latitude, longitude, elevation_m)

    def moon_positions_many(
        self, dts_utc: Sequence[datetime], latitude: float, longitude: float, elevation_m: float
    ) -> List[BodyPosition]:
        return self._many("moon", dts_utc, latitude, longitude, elevation_m)

    def moon_phases_many(self, dts_utc: Sequence[datetime]) -> List[MoonPhase]:
        if not dts_utc:
            return []
        degs, fracs = self._phase(self._times(dts_utc))
        return [MoonPhase(phase_deg=float(p), illuminated_fraction=float(f)) for p, f in zip(degs, fracs)]
