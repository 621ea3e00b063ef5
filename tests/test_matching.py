from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

import pytest

from fakes import YEAR, geometric_engine, jst, make_location
from fujical.core.config import MatchingConfig, SnapshotConfig
from fujical.core.models import FujiEvent, OrbitSnapshot
from fujical.core.timeutil import as_utc
from fujical.pipeline.candidates import CandidateFilter
from fujical.pipeline.locations import StaticLocationRepository
from fujical.pipeline.matching import STAGE3, LocationMatcher, deduplicate_events
from fujical.pipeline.snapshots import OrbitSnapshotGenerator

DAY = date(YEAR, 2, 10)
SAPPORO = (43.0621, 141.3544, 20.0)


def _event(hh: int, mm: int, quality: float, ptype: str = "diamond_sunset") -> FujiEvent:
    return FujiEvent(
        location_id=1,
        date=DAY,
        instant=as_utc(jst(YEAR, 2, 10, hh, mm)),
        phenomenon_type=ptype,
        azimuth=270.0,
        elevation=4.8,
        azimuth_diff=0.1,
        elevation_diff=0.1,
        total_diff=0.1414,
        accuracy_tier="perfect",
        quality_score=quality,
    )


def _run_stages_1_2(sky, store) -> None:
    OrbitSnapshotGenerator(geometric_engine(sky), store, SnapshotConfig(step_minutes=60)).generate(YEAR)
    CandidateFilter(store).run(YEAR)


# ---- dedup ----
def test_dedup_keeps_both_when_far_apart_and_close_in_quality():
    out = deduplicate_events([_event(6, 0, 0.91), _event(9, 0, 0.88)])
    assert [e.quality_score for e in out] == [0.91, 0.88]


def test_dedup_drops_lower_quality_nearby_event():
    out = deduplicate_events([_event(6, 0, 0.91), _event(6, 20, 0.70)])
    assert [e.quality_score for e in out] == [0.91]


def test_dedup_drops_close_in_time_even_if_similar_quality():
    out = deduplicate_events([_event(6, 20, 0.88), _event(6, 0, 0.91)])
    assert [e.instant for e in out] == [as_utc(jst(YEAR, 2, 10, 6, 0))]


def test_dedup_caps_events_per_day():
    out = deduplicate_events([_event(3, 0, 0.90), _event(6, 0, 0.91), _event(9, 0, 0.89), _event(12, 0, 0.9)])
    assert len(out) == 2
    assert 0.91 in [e.quality_score for e in out]


def test_dedup_groups_by_phenomenon():
    out = deduplicate_events([_event(6, 0, 0.91), _event(6, 10, 0.5, "pearl_moonset")])
    assert len(out) == 2


def test_dedup_respects_custom_separation():
    out = deduplicate_events(
        [_event(6, 0, 0.91), _event(6, 40, 0.90)],
        min_separation=timedelta(minutes=30),
    )
    assert len(out) == 2


# ---- matching ----
def test_diamond_tolerance_is_width_plus_radius(store, repo, east_location):
    m = LocationMatcher(store, repo)
    tol = m.diamond_azimuth_tolerance(east_location)
    assert tol == pytest.approx(1.066 + 0.265, abs=0.02)


def test_empty_stage2_gives_no_events(sky, store, repo):
    OrbitSnapshotGenerator(geometric_engine(sky), store, SnapshotConfig(step_minutes=60)).generate(YEAR)
    summary = LocationMatcher(store, repo).match_all(YEAR)

    assert summary.total_events == 0
    assert store.count_events(YEAR) == 0
    assert store.get_checkpoint(STAGE3, YEAR) == date(YEAR, 12, 31)


def test_snapshot_source_skips_the_gate(sky, store, repo):
    OrbitSnapshotGenerator(geometric_engine(sky), store, SnapshotConfig(step_minutes=60)).generate(YEAR)
    summary = LocationMatcher(store, repo, MatchingConfig(source="snapshots")).match_all(YEAR)
    assert summary.total_events == 2 * 365


def test_full_match(sky, store, repo, east_location):
    _run_stages_1_2(sky, store)
    summary = LocationMatcher(store, repo).match_all(YEAR)

    assert summary.total_events == 2 * 365
    assert summary.matched_locations == 1
    assert summary.failed == []

    events = store.query_events(YEAR, location_id=east_location.id, start=DAY, end=DAY)
    by_type = {e.phenomenon_type: e for e in events}
    assert set(by_type) == {"diamond_sunset", "pearl_moonset"}

    sunset = by_type["diamond_sunset"]
    assert sunset.instant == jst(YEAR, 2, 10, 17, 0)
    assert sunset.accuracy_tier == "perfect"
    assert sunset.quality_score == pytest.approx(1.0)

    moonset = by_type["pearl_moonset"]
    assert moonset.instant == jst(YEAR, 2, 10, 5, 0)
    assert moonset.quality_score == pytest.approx(0.9)
    assert moonset.moon_illumination == pytest.approx(0.9)


def test_events_stay_inside_the_year(sky, store, repo):
    _run_stages_1_2(sky, store)
    LocationMatcher(store, repo).match_all(YEAR)
    events = store.query_events(YEAR)
    assert min(e.date for e in events) == date(YEAR, 1, 1)
    assert max(e.date for e in events) == date(YEAR, 12, 31)
    assert store.count_events(YEAR + 1) == 0


def test_rematch_replaces_events(sky, store, repo):
    _run_stages_1_2(sky, store)
    m = LocationMatcher(store, repo)
    m.match_all(YEAR)
    m.match_all(YEAR)
    assert store.count_events(YEAR) == 2 * 365


def test_far_location_is_skipped(sky, store, east_location):
    _run_stages_1_2(sky, store)
    far = make_location(9, SAPPORO, "sapporo")
    repo = StaticLocationRepository.of([east_location, far])
    summary = LocationMatcher(store, repo).match_all(YEAR)

    outcome = {o.location_id: o for o in summary.outcomes}
    assert outcome[9].skipped == "too far"
    assert outcome[9].events == 0
    assert outcome[1].events == 2 * 365


def test_match_location_replaces_only_that_location(sky, store, east_location):
    _run_stages_1_2(sky, store)
    twin = make_location(2, (35.3606, 139.2005, 10.0), "twin")
    repo = StaticLocationRepository.of([east_location, twin])
    m = LocationMatcher(store, repo)
    m.match_all(YEAR)
    before = store.count_events(YEAR, location_id=1)

    outcome = m.match_location(YEAR, twin)
    assert outcome.events == 2 * 365
    assert store.count_events(YEAR, location_id=1) == before
    assert store.count_events(YEAR, location_id=2) == 2 * 365

    assert m.clear_location_events(2, YEAR) == 2 * 365
    assert store.count_events(YEAR, location_id=2) == 0
    assert store.count_events(YEAR, location_id=1) == before


def test_match_rows_direction_sets_type(store, repo, east_location):
    m = LocationMatcher(store, repo)
    row = OrbitSnapshot(
        year=YEAR,
        instant=as_utc(jst(YEAR, 2, 10, 17, 0)),
        date=DAY,
        body="sun",
        azimuth=east_location.fuji_bearing + 0.3,
        elevation=east_location.fuji_elevation - 0.2,
        visible=True,
    )
    (ev,) = m.match_rows(east_location, [row])
    assert ev.phenomenon_type == "diamond_sunset"
    assert ev.azimuth_diff == pytest.approx(0.3)
    assert ev.elevation_diff == pytest.approx(0.2)
    assert ev.accuracy_tier == "good"

    moved = replace(row, azimuth=east_location.fuji_bearing + 2.0)
    assert m.match_rows(east_location, [moved]) == []
