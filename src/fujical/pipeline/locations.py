# src/fujical/pipeline/locations.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

from fujical.core.errors import InvalidCoordinates
from fujical.core.models import ObserverLocation

log = logging.getLogger(__name__)


@runtime_checkable
class LocationRepository(Protocol):
    """Read side of the location registry (CRUD lives outside the engine)."""

    def list_locations(self) -> List[ObserverLocation]: ...
    def get_location(self, location_id: int) -> Optional[ObserverLocation]: ...


@dataclass
class StaticLocationRepository:
    _by_id: Dict[int, ObserverLocation] = field(default_factory=dict)

    @classmethod
    def of(cls, locations: Iterable[ObserverLocation]) -> "StaticLocationRepository":
        repo = cls()
        for loc in locations:
            repo.put(loc)
        return repo

    def put(self, location: ObserverLocation) -> ObserverLocation:
        """Register or replace a location; Fuji geometry is (re)derived here."""
        loc = location.with_fuji_geometry()
        self._by_id[loc.id] = loc
        return loc

    def list_locations(self) -> List[ObserverLocation]:
        return [self._by_id[k] for k in sorted(self._by_id)]

    def get_location(self, location_id: int) -> Optional[ObserverLocation]:
        return self._by_id.get(location_id)


def load_locations_json(path: Union[str, Path]) -> StaticLocationRepository:
    """
    Load locations from a JSON list:

        [{"id": 1, "name": "...", "latitude": 35.6, "longitude": 139.7, "elevation": 10}, ...]

    Entries with invalid coordinates are logged and skipped.
    """
    p = Path(path).expanduser()
    raw = json.loads(p.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("locations", [])

    repo = StaticLocationRepository()
    for item in raw:
        try:
            repo.put(
                ObserverLocation(
                    id=int(item["id"]),
                    name=str(item.get("name", "")),
                    latitude=float(item["latitude"]),
                    longitude=float(item["longitude"]),
                    elevation=float(item.get("elevation", 0.0)),
                )
            )
        except InvalidCoordinates as e:
            log.warning("location skipped: id=%s: %s", item.get("id"), e)
    log.info("loaded %d locations from %s", len(repo.list_locations()), p)
    return repo
