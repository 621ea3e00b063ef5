"""SQL-backed FujiStore (SQLAlchemy Core). Works with SQLite and PostgreSQL URLs."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from fujical.core.models import FujiCandidateWindow, FujiEvent, OrbitSnapshot

from .store import AzimuthRange, ValueRange

log = logging.getLogger(__name__)

metadata = MetaData()


orbit_snapshots = Table(
    "orbit_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("year", Integer, nullable=False),
    Column("instant", DateTime(timezone=True), nullable=False),
    Column("date", Date, nullable=False),
    Column("body", String(8), nullable=False),
    Column("azimuth", Float, nullable=False),
    Column("elevation", Float, nullable=False),
    Column("visible", Boolean, nullable=False),
    Column("moon_phase", Float, nullable=True),
    Column("moon_illumination", Float, nullable=True),
)

Index("ix_orbit_snapshots_year_body_date", orbit_snapshots.c.year, orbit_snapshots.c.body, orbit_snapshots.c.date)
Index("ix_orbit_snapshots_year_body_azimuth", orbit_snapshots.c.year, orbit_snapshots.c.body, orbit_snapshots.c.azimuth)


fuji_candidates = Table(
    "fuji_candidates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("year", Integer, nullable=False),
    Column("date", Date, nullable=False),
    Column("body", String(8), nullable=False),
    Column("phenomenon_type", String(32), nullable=False),
    Column("azimuth", Float, nullable=False),
    Column("elevation", Float, nullable=False),
    Column("instant", DateTime(timezone=True), nullable=False),
    Column("day_part", String(16), nullable=False),
    Column("moon_illumination", Float, nullable=True),
)

Index("ix_fuji_candidates_year_body_date", fuji_candidates.c.year, fuji_candidates.c.body, fuji_candidates.c.date)


fuji_events = Table(
    "fuji_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("location_id", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("date", Date, nullable=False),
    Column("instant", DateTime(timezone=True), nullable=False),
    Column("phenomenon_type", String(32), nullable=False),
    Column("azimuth", Float, nullable=False),
    Column("elevation", Float, nullable=False),
    Column("azimuth_diff", Float, nullable=False),
    Column("elevation_diff", Float, nullable=False),
    Column("total_diff", Float, nullable=False),
    Column("accuracy_tier", String(16), nullable=False),
    Column("quality_score", Float, nullable=False),
    Column("moon_phase", Float, nullable=True),
    Column("moon_illumination", Float, nullable=True),
)

Index("ix_fuji_events_year_location", fuji_events.c.year, fuji_events.c.location_id)
Index("ix_fuji_events_year_date", fuji_events.c.year, fuji_events.c.date)


stage_checkpoints = Table(
    "stage_checkpoints",
    metadata,
    Column("stage", String(32), primary_key=True),
    Column("year", Integer, primary_key=True),
    Column("last_date", Date, nullable=False),
)


def _utc(dt: datetime) -> datetime:
    # SQLite drops tzinfo; values are always written as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _azimuth_clause(col, rng: AzimuthRange):
    lo, hi = rng
    if lo <= hi:
        return and_(col >= lo, col <= hi)
    return or_(col >= lo, col <= hi)


def _date_clauses(table: Table, start: Optional[date], end: Optional[date]) -> List[Any]:
    out = []
    if start is not None:
        out.append(table.c.date >= start)
    if end is not None:
        out.append(table.c.date <= end)
    return out


class SqlStore:
    """
    FujiStore on SQLAlchemy Core.

    Tables are created on construction. Every write runs in its own
    transaction (engine.begin()).
    """

    def __init__(self, url_or_engine: "str | Engine", *, echo: bool = False) -> None:
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            url = make_url(url_or_engine)
            if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
                # one shared connection, otherwise each thread sees its own empty database
                self.engine = create_engine(
                    url,
                    echo=echo,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            else:
                if url.get_backend_name() == "sqlite":
                    Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
                self.engine = create_engine(url, echo=echo)
        metadata.create_all(self.engine)
        log.debug("sql store ready: %s", self.engine.url.render_as_string(hide_password=True))

    # ---- helpers ----
    def _insert(self, table: Table, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self.engine.begin() as conn:
            conn.execute(table.insert(), rows)
        return len(rows)

    def _delete(self, stmt) -> int:
        with self.engine.begin() as conn:
            res = conn.execute(stmt)
        return int(res.rowcount or 0)

    def _count(self, table: Table, *where) -> int:
        stmt = select(func.count()).select_from(table).where(*where)
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    # ---- stage 1 ----
    def delete_snapshots(self, year: int, after: Optional[date] = None) -> int:
        stmt = delete(orbit_snapshots).where(orbit_snapshots.c.year == year)
        if after is not None:
            stmt = stmt.where(orbit_snapshots.c.date > after)
        return self._delete(stmt)

    def insert_snapshots(self, rows: Sequence[OrbitSnapshot]) -> int:
        return self._insert(
            orbit_snapshots,
            [
                {
                    "year": r.year,
                    "instant": _utc(r.instant),
                    "date": r.date,
                    "body": r.body,
                    "azimuth": r.azimuth,
                    "elevation": r.elevation,
                    "visible": r.visible,
                    "moon_phase": r.moon_phase,
                    "moon_illumination": r.moon_illumination,
                }
                for r in rows
            ],
        )

    def count_snapshots(self, year: int, body: Optional[str] = None) -> int:
        where = [orbit_snapshots.c.year == year]
        if body is not None:
            where.append(orbit_snapshots.c.body == body)
        return self._count(orbit_snapshots, *where)

    def query_snapshots(
        self,
        year: int,
        *,
        body: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        azimuth: Optional[AzimuthRange] = None,
        elevation: Optional[ValueRange] = None,
        min_illumination: Optional[float] = None,
    ) -> List[OrbitSnapshot]:
        t = orbit_snapshots
        where = [t.c.year == year, *_date_clauses(t, start, end)]
        if body is not None:
            where.append(t.c.body == body)
        if azimuth is not None:
            where.append(_azimuth_clause(t.c.azimuth, azimuth))
        if elevation is not None:
            where.append(t.c.elevation.between(elevation[0], elevation[1]))
        if min_illumination is not None:
            where.append(t.c.moon_illumination >= min_illumination)

        stmt = select(t).where(*where).order_by(t.c.instant, t.c.body)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            OrbitSnapshot(
                year=r["year"],
                instant=_utc(r["instant"]),
                date=r["date"],
                body=r["body"],
                azimuth=r["azimuth"],
                elevation=r["elevation"],
                visible=bool(r["visible"]),
                moon_phase=r["moon_phase"],
                moon_illumination=r["moon_illumination"],
            )
            for r in rows
        ]

    # ---- stage 2 ----
    def delete_candidates(self, year: int) -> int:
        return self._delete(delete(fuji_candidates).where(fuji_candidates.c.year == year))

    def insert_candidates(self, rows: Sequence[FujiCandidateWindow]) -> int:
        return self._insert(
            fuji_candidates,
            [
                {
                    "year": r.year,
                    "date": r.date,
                    "body": r.body,
                    "phenomenon_type": r.phenomenon_type,
                    "azimuth": r.azimuth,
                    "elevation": r.elevation,
                    "instant": _utc(r.instant),
                    "day_part": r.day_part,
                    "moon_illumination": r.moon_illumination,
                }
                for r in rows
            ],
        )

    def count_candidates(self, year: int) -> int:
        return self._count(fuji_candidates, fuji_candidates.c.year == year)

    def query_candidates(
        self,
        year: int,
        *,
        body: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[FujiCandidateWindow]:
        t = fuji_candidates
        where = [t.c.year == year, *_date_clauses(t, start, end)]
        if body is not None:
            where.append(t.c.body == body)
        stmt = select(t).where(*where).order_by(t.c.instant, t.c.body)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            FujiCandidateWindow(
                year=r["year"],
                date=r["date"],
                body=r["body"],
                phenomenon_type=r["phenomenon_type"],
                azimuth=r["azimuth"],
                elevation=r["elevation"],
                instant=_utc(r["instant"]),
                day_part=r["day_part"],
                moon_illumination=r["moon_illumination"],
            )
            for r in rows
        ]

    # ---- stage 3 ----
    def delete_events(self, year: Optional[int] = None, location_id: Optional[int] = None) -> int:
        where = []
        if year is not None:
            where.append(fuji_events.c.year == year)
        if location_id is not None:
            where.append(fuji_events.c.location_id == location_id)
        return self._delete(delete(fuji_events).where(*where))

    def insert_events(self, rows: Sequence[FujiEvent]) -> int:
        return self._insert(
            fuji_events,
            [
                {
                    "location_id": r.location_id,
                    "year": r.date.year,
                    "date": r.date,
                    "instant": _utc(r.instant),
                    "phenomenon_type": r.phenomenon_type,
                    "azimuth": r.azimuth,
                    "elevation": r.elevation,
                    "azimuth_diff": r.azimuth_diff,
                    "elevation_diff": r.elevation_diff,
                    "total_diff": r.total_diff,
                    "accuracy_tier": r.accuracy_tier,
                    "quality_score": r.quality_score,
                    "moon_phase": r.moon_phase,
                    "moon_illumination": r.moon_illumination,
                }
                for r in rows
            ],
        )

    def count_events(self, year: int, location_id: Optional[int] = None) -> int:
        where = [fuji_events.c.year == year]
        if location_id is not None:
            where.append(fuji_events.c.location_id == location_id)
        return self._count(fuji_events, *where)

    def query_events(
        self,
        year: int,
        *,
        location_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[FujiEvent]:
        t = fuji_events
        where = [t.c.year == year, *_date_clauses(t, start, end)]
        if location_id is not None:
            where.append(t.c.location_id == location_id)
        stmt = select(t).where(*where).order_by(t.c.instant, t.c.location_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            FujiEvent(
                location_id=r["location_id"],
                date=r["date"],
                instant=_utc(r["instant"]),
                phenomenon_type=r["phenomenon_type"],
                azimuth=r["azimuth"],
                elevation=r["elevation"],
                azimuth_diff=r["azimuth_diff"],
                elevation_diff=r["elevation_diff"],
                total_diff=r["total_diff"],
                accuracy_tier=r["accuracy_tier"],
                quality_score=r["quality_score"],
                moon_phase=r["moon_phase"],
                moon_illumination=r["moon_illumination"],
            )
            for r in rows
        ]

    def event_location_ids(self, year: int) -> Set[int]:
        stmt = select(fuji_events.c.location_id).where(fuji_events.c.year == year).distinct()
        with self.engine.connect() as conn:
            return {int(x) for x in conn.execute(stmt).scalars()}

    # ---- checkpoints ----
    def get_checkpoint(self, stage: str, year: int) -> Optional[date]:
        t = stage_checkpoints
        stmt = select(t.c.last_date).where(t.c.stage == stage, t.c.year == year)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def set_checkpoint(self, stage: str, year: int, value: date) -> None:
        t = stage_checkpoints
        with self.engine.begin() as conn:
            conn.execute(delete(t).where(t.c.stage == stage, t.c.year == year))
            conn.execute(t.insert(), {"stage": stage, "year": year, "last_date": value})

    def clear_checkpoint(self, stage: str, year: int) -> None:
        t = stage_checkpoints
        self._delete(delete(t).where(t.c.stage == stage, t.c.year == year))
