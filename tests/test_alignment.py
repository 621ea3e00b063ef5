from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from fakes import EAST_OF_FUJI, WEST_OF_FUJI, ScriptedSky, geometric_engine, jst, make_location
from fujical.core.alignment import AlignmentSearch, require_alignment, side_compatible, window_bounds
from fujical.core.config import AlignmentConfig, SearchWindow
from fujical.core.errors import NoAlignmentFound

DAY = date(2026, 1, 15)


def _search(sky) -> AlignmentSearch:
    return AlignmentSearch(geometric_engine(sky))


@pytest.fixture
def east():
    return make_location(1, EAST_OF_FUJI, "east")


@pytest.fixture
def west():
    return make_location(2, WEST_OF_FUJI, "west")


def test_perfect_sunset(east):
    at = jst(2026, 1, 15, 17, 0)
    sky = ScriptedSky("sun", at, east.fuji_bearing, east.fuji_elevation)
    res = _search(sky).search(DAY, east, "sunset")

    assert res is not None
    assert res.instant == at
    assert res.variant == "center"
    assert res.azimuth_diff == pytest.approx(0.0, abs=1e-9)
    assert res.elevation_diff == pytest.approx(0.0, abs=1e-9)
    assert res.accuracy_tier == "perfect"
    assert not res.refined


def test_perfect_sunset_day_events(east):
    at = jst(2026, 1, 15, 17, 0)
    sky = ScriptedSky("sun", at, east.fuji_bearing, east.fuji_elevation)
    events = _search(sky).day_events(DAY, east)

    assert len(events) == 1
    e = events[0]
    assert e.phenomenon_type == "diamond_sunset"
    assert e.date == DAY
    assert e.instant == at
    assert e.accuracy_tier == "perfect"
    assert e.quality_score == pytest.approx(1.0)
    assert e.moon_phase is None and e.moon_illumination is None
    assert e.location_id == east.id


def test_fine_pass_finds_off_grid_instant(east):
    at = jst(2026, 1, 15, 17, 0, 10)
    sky = ScriptedSky("sun", at, east.fuji_bearing, east.fuji_elevation)
    res = _search(sky).search(DAY, east, "sunset")

    assert res is not None
    assert res.refined
    assert res.instant == at
    assert res.accuracy_tier == "perfect"


def test_upper_limb_variant(east):
    at = jst(2026, 1, 15, 17, 0)
    sky = ScriptedSky("sun", at, east.fuji_bearing, east.fuji_elevation - 0.533 / 2.0)
    res = _search(sky).search(DAY, east, "sunset")

    assert res is not None
    assert res.variant == "top"
    assert res.target_elevation == pytest.approx(east.fuji_elevation - 0.2665)
    assert res.elevation_diff == pytest.approx(0.0, abs=1e-9)


def test_no_alignment(east):
    at = jst(2026, 1, 15, 17, 0)
    sky = ScriptedSky("sun", at, east.fuji_bearing - 90.0, east.fuji_elevation, az_rate=0.0)
    search = _search(sky)

    assert search.search(DAY, east, "sunset") is None
    assert search.day_events(DAY, east) == []
    with pytest.raises(NoAlignmentFound):
        require_alignment(search, DAY, east, "sunset")


def test_wrong_side_is_never_reported(west):
    # geometry lines up, but a sunset cannot sit on an eastern bearing
    at = jst(2026, 1, 15, 17, 0)
    sky = ScriptedSky("sun", at, west.fuji_bearing, west.fuji_elevation)
    assert _search(sky).search(DAY, west, "sunset") is None


@pytest.mark.parametrize(
    "sub_event,bearing,ok",
    [
        ("sunrise", 90.0, True),
        ("sunrise", 270.0, False),
        ("rising", 0.0, True),
        ("rising", 180.0, False),
        ("sunset", 270.0, True),
        ("setting", 180.0, True),
        ("setting", 179.9, False),
    ],
)
def test_side_compatible(sub_event, bearing, ok):
    assert side_compatible(sub_event, bearing) is ok


def test_pearl_needs_bright_moon(east):
    at = jst(2026, 1, 15, 5, 0)
    dim = ScriptedSky("moon", at, east.fuji_bearing, east.fuji_elevation, illumination=0.5)
    search = _search(dim)
    assert search.search(DAY, east, "setting") is not None
    assert search.day_events(DAY, east) == []

    bright = ScriptedSky("moon", at, east.fuji_bearing, east.fuji_elevation, illumination=0.9)
    events = _search(bright).day_events(DAY, east)
    assert [e.phenomenon_type for e in events] == ["pearl_moonset"]
    assert events[0].moon_illumination == pytest.approx(0.9)
    assert events[0].quality_score == pytest.approx(0.9)


def test_moonrise_after_midnight_is_dated_by_jst(west):
    at = jst(2026, 1, 16, 2, 0)
    sky = ScriptedSky("moon", at, west.fuji_bearing, west.fuji_elevation)
    events = _search(sky).day_events(DAY, west)

    assert len(events) == 1
    assert events[0].phenomenon_type == "pearl_moonrise"
    assert events[0].date == date(2026, 1, 16)
    assert events[0].instant == at


def test_window_bounds_cross_midnight():
    start, end = window_bounds(DAY, SearchWindow(18, 30))
    assert start == datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 1, 15, 21, 0, tzinfo=timezone.utc)


def test_setting_uses_finer_steps():
    cfg = AlignmentConfig()
    assert cfg.window("setting").step_seconds == 20
    assert cfg.window("setting").fine_step_seconds == 5
    assert cfg.window("sunset").step_seconds == 30
    with pytest.raises(ValueError):
        cfg.window("noon")


@pytest.mark.parametrize(
    "body,km,tol",
    [("sun", 30.0, 0.25), ("sun", 75.0, 0.4), ("sun", 150.0, 0.6), ("moon", 30.0, 1.0), ("moon", 150.0, 3.0)],
)
def test_azimuth_tolerance_by_distance(east, body, km, tol):
    sky = ScriptedSky("sun", jst(2026, 1, 15, 17, 0), 0.0, 0.0)
    assert _search(sky).azimuth_tolerance(body, km) == tol


def test_afternoon_moonrise(west):
    at = jst(2026, 1, 15, 16, 0)
    sky = ScriptedSky("moon", at, west.fuji_bearing, west.fuji_elevation, illumination=0.85)
    events = _search(sky).day_events(DAY, west)

    assert [(e.phenomenon_type, e.instant) for e in events] == [("pearl_moonrise", at)]
    assert events[0].moon_illumination == pytest.approx(0.85)


def test_sunset_just_after_window_stays_inside(east):
    # the sun reaches the summit at 20:01, the sunset window closes at 20:00
    sky = ScriptedSky("sun", jst(2026, 1, 15, 20, 1), east.fuji_bearing, east.fuji_elevation)
    search = _search(sky)
    start, end = window_bounds(DAY, search.config.window("sunset"))
    res = search.search(DAY, east, "sunset")

    assert res is not None
    assert start <= res.instant <= end
    assert res.instant == end


def test_moonrise_just_after_next_morning_stays_inside(west):
    sky = ScriptedSky("moon", jst(2026, 1, 16, 6, 1), west.fuji_bearing, west.fuji_elevation)
    search = _search(sky)
    start, end = window_bounds(DAY, search.config.window("rising"))
    res = search.search(DAY, west, "rising")

    assert end == datetime(2026, 1, 15, 21, 0, tzinfo=timezone.utc)
    assert res is not None
    assert start <= res.instant <= end
    assert res.instant == end
