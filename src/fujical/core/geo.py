# src/fujical/core/geo.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from .errors import InvalidCoordinates

EARTH_RADIUS_M = 6_371_000.0
EYE_HEIGHT_M = 1.7
# 大気差: 地球曲率による見かけの低下の約13%を打ち消す
REFRACTION_COEFFICIENT = 0.13

# 富士山 剣ヶ峰
FUJI_LATITUDE = 35.3606
FUJI_LONGITUDE = 138.7274
FUJI_ELEVATION_M = 3776.0
FUJI_SUMMIT_WIDTH_M = 800.0


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    elevation: float = 0.0  # metres above sea level


FUJI_SUMMIT = GeoPoint(FUJI_LATITUDE, FUJI_LONGITUDE, FUJI_ELEVATION_M)


def norm360(deg: float) -> float:
    """Normalize to [0, 360)."""
    x = deg % 360.0
    return x + 360.0 if x < 0 else x


def angdiff180(deg: float) -> float:
    """Map angle to (-180, 180]."""
    x = (deg + 180.0) % 360.0 - 180.0
    return 180.0 if x == -180.0 else x


def azimuth_distance(a: float, b: float) -> float:
    """Circular distance between two azimuths, in [0, 180]."""
    return abs(angdiff180(a - b))


def validate_point(p: GeoPoint) -> GeoPoint:
    for name, v in (("latitude", p.latitude), ("longitude", p.longitude), ("elevation", p.elevation)):
        if not math.isfinite(v):
            raise InvalidCoordinates(f"{name} must be finite (got {v!r})")
    if not -90.0 <= p.latitude <= 90.0:
        raise InvalidCoordinates(f"latitude out of range: {p.latitude}")
    if not -180.0 <= p.longitude <= 180.0:
        raise InvalidCoordinates(f"longitude out of range: {p.longitude}")
    return p


def bearing_to(observer: GeoPoint, target: GeoPoint) -> float:
    """Initial great-circle bearing from observer to target, degrees in [0, 360)."""
    validate_point(observer)
    validate_point(target)
    phi1 = math.radians(observer.latitude)
    phi2 = math.radians(target.latitude)
    dlon = math.radians(target.longitude - observer.longitude)

    y = math.sin(dlon) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlon)
    b = norm360(math.degrees(math.atan2(y, x)))
    # 359.99999... -> 360.0 due to float rounding
    return 0.0 if b >= 360.0 else b


def distance_to(observer: GeoPoint, target: GeoPoint) -> float:
    """Haversine surface distance in metres on a spherical Earth."""
    validate_point(observer)
    validate_point(target)
    phi1 = math.radians(observer.latitude)
    phi2 = math.radians(target.latitude)
    dphi = phi2 - phi1
    dlon = math.radians(target.longitude - observer.longitude)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))
    return EARTH_RADIUS_M * c


def elevation_angle(
    observer: GeoPoint,
    target: GeoPoint,
    distance: float,
    *,
    eye_height: float = EYE_HEIGHT_M,
) -> float:
    """
    Apparent elevation angle (degrees) of `target` seen from `observer`.

    Curvature drop is distance^2 / 2R; terrestrial refraction lifts back
    REFRACTION_COEFFICIENT of it.
    """
    if not math.isfinite(distance) or distance < 0:
        raise InvalidCoordinates(f"distance must be finite and >= 0 (got {distance!r})")
    height_diff = target.elevation - (observer.elevation + eye_height)
    curvature_drop = distance * distance / (2 * EARTH_RADIUS_M)
    refraction_lift = REFRACTION_COEFFICIENT * curvature_drop
    apparent_vertical = height_diff - (curvature_drop - refraction_lift)
    return math.degrees(math.atan2(apparent_vertical, distance))


def atmospheric_refraction(elevation: float) -> float:
    """
    Astronomical refraction (degrees) for a body at true elevation `elevation`.

    Saemundsson's formula between 0.2 and 15 degrees; 34.1' at the horizon
    and below; ignored from 15 degrees up.
    """
    if elevation >= 15.0:
        return 0.0
    if elevation <= 0.2:
        return 34.1 / 60.0
    h = elevation
    r_arcmin = 1.02 / math.tan(math.radians(h + 10.3 / (h + 5.11)))
    return (r_arcmin - 0.0019279) / 60.0


def apparent_summit_width(distance: float, *, summit_width: float = FUJI_SUMMIT_WIDTH_M) -> float:
    """Angular width (degrees) of the summit plateau seen from `distance` metres."""
    if distance <= 0:
        raise InvalidCoordinates("distance must be positive")
    return math.degrees(2 * math.atan(summit_width / (2 * distance)))


def fuji_geometry(observer: GeoPoint, summit: GeoPoint = FUJI_SUMMIT) -> Tuple[float, float, float]:
    """Return (bearing deg, elevation deg, distance m) from observer to the summit."""
    bearing = bearing_to(observer, summit)
    distance = distance_to(observer, summit)
    elevation = elevation_angle(observer, summit, distance)
    return bearing, elevation, distance
