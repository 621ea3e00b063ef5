from __future__ import annotations

from datetime import date

import pytest

from fakes import YEAR, hourly_config, jst, make_location
from fujical.core.errors import ProviderUnavailable, RunInProgress, StageFailure
from fujical.pipeline.locations import StaticLocationRepository
from fujical.pipeline.orchestrator import HEALTHY_MESSAGE, Orchestrator
from fujical.pipeline.store import MemoryStore

DAY = date(YEAR, 2, 10)
ROWS = 365 * 24 * 2
SAPPORO = (43.0621, 141.3544, 20.0)
KAGOSHIMA = (31.5966, 130.5571, 5.0)


class BrokenCandidateStore(MemoryStore):
    def insert_candidates(self, rows):
        raise RuntimeError("disk full")


@pytest.fixture
def orch(sky, store, repo) -> Orchestrator:
    return Orchestrator.from_provider(sky, store, repo, hourly_config())


def test_precompute_year(orch, store):
    res = orch.precompute_year(YEAR)

    assert res.success
    assert res.total_data_points == ROWS
    assert res.total_events == 2 * 365
    assert list(res.stage_breakdown) == ["stage1", "stage2", "stage3"]
    assert res.stage_breakdown["stage2"].count == 2 * 365
    assert res.failed_stage is None
    assert orch.state == "done"
    assert orch.last_result == res


def test_precompute_is_idempotent(orch, store):
    orch.precompute_year(YEAR)
    first = store.query_events(YEAR)
    counts = (store.count_snapshots(YEAR), store.count_candidates(YEAR), store.count_events(YEAR))

    orch.precompute_year(YEAR)
    assert (store.count_snapshots(YEAR), store.count_candidates(YEAR), store.count_events(YEAR)) == counts
    assert store.query_events(YEAR) == first


def test_stage1_failure_is_reported(orch, sky):
    sky.fail_from = date(YEAR, 1, 1)

    with pytest.raises(StageFailure) as ei:
        orch.run_year(YEAR)
    assert ei.value.stage == "stage1"
    assert "stage1" in ei.value.telemetry
    assert orch.state == "failed"

    res = orch.precompute_year(YEAR)
    assert not res.success
    assert res.failed_stage == "stage1"
    assert "ProviderUnavailable" in res.error


def test_stage2_failure_keeps_stage1_telemetry(sky, repo):
    store = BrokenCandidateStore()
    orch = Orchestrator.from_provider(sky, store, repo, hourly_config())
    res = orch.precompute_year(YEAR)

    assert not res.success
    assert res.failed_stage == "stage2"
    assert "disk full" in res.error
    assert res.stage_breakdown["stage1"].count == ROWS
    assert "error" in res.stage_breakdown["stage2"].detail
    # stage1 rows are left in place
    assert store.count_snapshots(YEAR) == ROWS
    assert store.count_events(YEAR) == 0


def test_execute_from_stage2(orch, store):
    orch.precompute_year(YEAR)
    res = orch.execute_from_stage2(YEAR)
    assert res.success
    assert "stage1" not in res.stage_breakdown
    assert res.total_events == 2 * 365
    assert store.count_snapshots(YEAR) == ROWS


def test_concurrent_run_is_rejected(orch):
    orch._lock.acquire()
    try:
        with pytest.raises(RunInProgress):
            orch.run_year(YEAR)
    finally:
        orch._lock.release()


def test_run_year_rejects_unknown_stage(orch):
    with pytest.raises(ValueError):
        orch.run_year(YEAR, from_stage=3)


# ---- health / statistics ----
def test_health_after_precompute(orch):
    orch.precompute_year(YEAR)
    report = orch.health_check(YEAR)
    assert report.healthy
    assert report.recommendations == [HEALTHY_MESSAGE]
    assert [c.stage for c in report.checks] == ["stage1", "stage2", "stage3"]


def test_health_of_empty_year(orch):
    report = orch.health_check(YEAR)
    assert not report.healthy
    assert not any(c.ok for c in report.checks)
    assert any("Stage 1 has no data" in r for r in report.recommendations)
    assert HEALTHY_MESSAGE not in report.recommendations


def test_health_counts_location_coverage(sky, store, east_location):
    repo = StaticLocationRepository.of(
        [east_location, make_location(8, SAPPORO, "sapporo"), make_location(9, KAGOSHIMA, "kagoshima")]
    )
    orch = Orchestrator.from_provider(sky, store, repo, hourly_config())
    orch.precompute_year(YEAR)

    report = orch.health_check(YEAR)
    stage3 = report.checks[2]
    assert not stage3.ok
    assert stage3.actual == pytest.approx(1 / 3, abs=1e-3)
    assert any("Stage 3 covers" in r for r in report.recommendations)


def test_statistics(orch):
    orch.precompute_year(YEAR)
    stats = orch.statistics(YEAR)
    assert stats.events == 2 * 365
    assert stats.by_type == {"diamond_sunset": 365, "pearl_moonset": 365}
    assert stats.by_tier == {"perfect": 2 * 365, "excellent": 0, "good": 0, "fair": 0}
    assert stats.by_month[1] == 62
    assert stats.locations_with_events == 1


# ---- incremental ----
def test_recompute_unknown_location(orch):
    res = orch.recompute_location(99, YEAR)
    assert not res.success
    assert res.error == "location not found"


def test_recompute_needs_stage1(orch):
    res = orch.recompute_location(1, YEAR)
    assert not res.success
    assert "precompute_year" in res.error


def test_recompute_new_location(orch, repo, store):
    orch.precompute_year(YEAR)
    repo.put(make_location(2, (35.3606, 139.2005, 10.0), "twin"))

    res = orch.recompute_location(2, YEAR)
    assert res.success
    assert res.event_count == 2 * 365
    assert store.count_events(YEAR, location_id=1) == 2 * 365

    assert orch.clear_location(2, YEAR) == 2 * 365
    assert store.count_events(YEAR, location_id=2) == 0


# ---- day lookup ----
def test_day_events_direct_then_precomputed(orch, east_location):
    direct = orch.day_events(DAY, east_location)
    assert [(e.phenomenon_type, e.instant) for e in direct] == [
        ("pearl_moonset", jst(YEAR, 2, 10, 5, 0)),
        ("diamond_sunset", jst(YEAR, 2, 10, 17, 0)),
    ]
    assert all(e.date == DAY for e in direct)

    orch.precompute_year(YEAR)
    stored = orch.day_events(DAY, east_location)
    assert [(e.phenomenon_type, e.instant) for e in stored] == [(e.phenomenon_type, e.instant) for e in direct]


def test_day_events_computes_directly_for_unmatched_location(orch, repo):
    orch.precompute_year(YEAR)
    twin = repo.put(make_location(2, (35.3606, 139.2005, 10.0), "twin"))
    assert not orch.has_precomputed(2, YEAR)

    direct = [(e.phenomenon_type, e.instant) for e in orch.compute_day_events(DAY, twin)]
    assert len(direct) == 2
    assert [(e.phenomenon_type, e.instant) for e in orch.day_events(DAY, twin)] == direct

    orch.recompute_location(2, YEAR)
    assert orch.has_precomputed(2, YEAR)
    assert [(e.phenomenon_type, e.instant) for e in orch.day_events(DAY, twin)] == direct


def test_failed_rebuild_stops_serving_stored_events(orch, sky, east_location):
    orch.precompute_year(YEAR)
    assert orch.has_precomputed(east_location.id, YEAR)

    sky.fail_from = date(YEAR, 1, 1)
    assert not orch.precompute_year(YEAR).success
    assert not orch.has_precomputed(east_location.id, YEAR)
    with pytest.raises(ProviderUnavailable):
        orch.day_events(DAY, east_location)


def test_compute_day_events_ignores_store(orch, store, east_location):
    events = orch.compute_day_events(DAY, east_location)
    assert {e.phenomenon_type for e in events} == {"pearl_moonset", "diamond_sunset"}
    assert store.count_events(YEAR) == 0
