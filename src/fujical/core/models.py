# src/fujical/core/models.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Literal, Optional

from .geo import FUJI_SUMMIT, GeoPoint, fuji_geometry, validate_point
from .scoring import AccuracyTier

Body = Literal["sun", "moon"]
DayPart = Literal["morning", "afternoon"]
PhenomenonType = Literal["diamond_sunrise", "diamond_sunset", "pearl_moonrise", "pearl_moonset"]

PHENOMENON_TYPES: tuple[PhenomenonType, ...] = (
    "diamond_sunrise",
    "diamond_sunset",
    "pearl_moonrise",
    "pearl_moonset",
)


def phenomenon_for(body: str, rising: bool) -> PhenomenonType:
    if body == "sun":
        return "diamond_sunrise" if rising else "diamond_sunset"
    return "pearl_moonrise" if rising else "pearl_moonset"


def body_of(phenomenon_type: str) -> Body:
    return "sun" if phenomenon_type.startswith("diamond") else "moon"


@dataclass(frozen=True)
class ObserverLocation:
    """
    Registered observation point.

    fuji_bearing / fuji_elevation / fuji_distance are derived from the
    coordinates and are only ever set together (see create / with_fuji_geometry).
    """

    id: int
    name: str
    latitude: float
    longitude: float
    elevation: float = 0.0
    fuji_bearing: Optional[float] = None
    fuji_elevation: Optional[float] = None
    fuji_distance: Optional[float] = None  # metres

    @classmethod
    def create(
        cls,
        id: int,
        name: str,
        latitude: float,
        longitude: float,
        elevation: float = 0.0,
    ) -> "ObserverLocation":
        return cls(id=id, name=name, latitude=latitude, longitude=longitude, elevation=elevation).with_fuji_geometry()

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude, self.elevation)

    @property
    def has_fuji_geometry(self) -> bool:
        return None not in (self.fuji_bearing, self.fuji_elevation, self.fuji_distance)

    @property
    def fuji_distance_km(self) -> float:
        if self.fuji_distance is None:
            raise ValueError(f"location {self.id} has no Fuji geometry")
        return self.fuji_distance / 1000.0

    def with_fuji_geometry(self) -> "ObserverLocation":
        bearing, elev, dist = fuji_geometry(validate_point(self.point), FUJI_SUMMIT)
        return replace(self, fuji_bearing=bearing, fuji_elevation=elev, fuji_distance=dist)

    def moved_to(self, latitude: float, longitude: float, elevation: Optional[float] = None) -> "ObserverLocation":
        """Return an updated copy with recomputed Fuji geometry."""
        e = self.elevation if elevation is None else elevation
        return replace(self, latitude=latitude, longitude=longitude, elevation=e).with_fuji_geometry()


@dataclass(frozen=True)
class OrbitSnapshot:
    year: int
    instant: datetime  # UTC
    date: date  # JST civil date of instant
    body: Body
    azimuth: float
    elevation: float
    visible: bool
    moon_phase: Optional[float] = None  # degrees, 0=new 180=full
    moon_illumination: Optional[float] = None  # 0..1


@dataclass(frozen=True)
class FujiCandidateWindow:
    year: int
    date: date
    body: Body
    phenomenon_type: PhenomenonType
    azimuth: float
    elevation: float
    instant: datetime
    day_part: DayPart
    moon_illumination: Optional[float] = None


@dataclass(frozen=True)
class FujiEvent:
    location_id: int
    date: date
    instant: datetime
    phenomenon_type: PhenomenonType
    azimuth: float
    elevation: float
    azimuth_diff: float
    elevation_diff: float
    total_diff: float
    accuracy_tier: AccuracyTier
    quality_score: float
    moon_phase: Optional[float] = None
    moon_illumination: Optional[float] = None

    @property
    def body(self) -> Body:
        return body_of(self.phenomenon_type)
