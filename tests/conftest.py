from __future__ import annotations

from datetime import date

import pytest

from fakes import EAST_OF_FUJI, YEAR, LinearSky, make_location
from fujical.core.models import ObserverLocation
from fujical.pipeline.locations import StaticLocationRepository
from fujical.pipeline.store import MemoryStore


@pytest.fixture
def east_location() -> ObserverLocation:
    return make_location(1, EAST_OF_FUJI, "east")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sky(east_location) -> LinearSky:
    return LinearSky(bearing=east_location.fuji_bearing, elevation=east_location.fuji_elevation)


@pytest.fixture
def repo(east_location) -> StaticLocationRepository:
    return StaticLocationRepository.of([east_location])


@pytest.fixture
def day() -> date:
    return date(YEAR, 1, 15)
