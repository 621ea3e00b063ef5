# src/fujical/pipeline/build_fuji_events.py
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Union

from fujical.core.config import FujiCalConfig
from fujical.core.providers.skyfield_provider import SkyfieldProvider

from .locations import load_locations_json
from .orchestrator import Orchestrator
from .sql_store import SqlStore

ENV_DB_URL = "FUJICAL_DB_URL"
ENV_EPHEMERIS = "FUJICAL_EPHEMERIS"
ENV_EPHEMERIS_PATH = "FUJICAL_EPHEMERIS_PATH"
DEFAULT_DB_URL = "sqlite:///data/fujical.sqlite"

log = logging.getLogger(__name__)


def _parse_ephemeris_arg(s: Optional[str]) -> Optional[Union[str, Path]]:
    if not s:
        return None
    # allow "de440s" shorthand
    if s in ("de440s", "de421"):
        return f"{s}.bsp"
    return s


def _emit(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        description="Precompute Diamond Fuji / Pearl Fuji events for a year (stage1 -> stage2 -> stage3)."
    )
    p.add_argument("--year", type=int, required=True, help="Calendar year (JST).")
    p.add_argument("--locations", required=True, help="JSON file with observation locations.")
    p.add_argument("--db", default=None, help=f"SQLAlchemy URL. Defaults to ${ENV_DB_URL} or {DEFAULT_DB_URL}.")

    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--resume", action="store_true", help="Continue stage1 after the last completed chunk.")
    mode.add_argument("--from-stage2", action="store_true", help="Reuse existing stage1 snapshots.")
    mode.add_argument("--location-id", type=int, default=None, help="Recompute a single location (stage3 only).")
    mode.add_argument("--health", action="store_true", help="Only run the health check.")
    mode.add_argument("--stats", action="store_true", help="Only print year statistics.")

    p.add_argument("--workers", type=int, default=1, help="Thread pool size for stage1 days / stage3 locations.")
    p.add_argument(
        "--ephemeris",
        default=None,
        help="Ephemeris file name under ./data (e.g. de440s.bsp, de421.bsp) or shorthand (de440s/de421).",
    )
    p.add_argument(
        "--ephemeris-path",
        default=None,
        help="Explicit ephemeris path. Overrides --ephemeris if provided.",
    )
    p.add_argument("--verbose", action="store_true")

    args = p.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db_url = args.db or os.environ.get(ENV_DB_URL, "").strip() or DEFAULT_DB_URL
    store = SqlStore(db_url)
    locations = load_locations_json(args.locations)

    cfg = FujiCalConfig()
    workers = max(1, int(args.workers))
    cfg = replace(
        cfg,
        snapshots=replace(cfg.snapshots, workers=workers),
        matching=replace(cfg.matching, workers=workers),
    )

    ephemeris = _parse_ephemeris_arg(args.ephemeris or os.environ.get(ENV_EPHEMERIS, "").strip())
    path_raw = args.ephemeris_path or os.environ.get(ENV_EPHEMERIS_PATH, "").strip()
    ephemeris_path = Path(path_raw).expanduser() if path_raw else None

    try:
        provider = SkyfieldProvider(ephemeris=ephemeris, ephemeris_path=ephemeris_path)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 2

    orch = Orchestrator.from_provider(provider, store, locations, cfg)

    if args.health:
        report = orch.health_check(args.year)
        _emit(report.model_dump())
        return 0 if report.healthy else 1

    if args.stats:
        _emit(orch.statistics(args.year).model_dump())
        return 0

    if args.location_id is not None:
        res = orch.recompute_location(args.location_id, args.year)
        _emit(res.model_dump())
        return 0 if res.success else 1

    try:
        if args.from_stage2:
            result = orch.execute_from_stage2(args.year)
        else:
            result = orch.precompute_year(args.year, resume=args.resume)
    except KeyboardInterrupt:
        log.warning("interrupted; rerun with --resume to continue stage1")
        return 130

    _emit(result.model_dump())
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
