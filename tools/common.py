from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fujical.core.providers.skyfield_provider import find_ephemeris

ENV_EPHEMERIS = "FUJICAL_EPHEMERIS"
ENV_EPHEMERIS_PATH = "FUJICAL_EPHEMERIS_PATH"


@dataclass(frozen=True)
class EphemerisConfig:
    name: Optional[str]
    path: Optional[Path]
    skip_reason: Optional[str]


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", help="YYYY-MM-DD")
    parser.add_argument("--start", help="YYYY-MM-DD")
    parser.add_argument("--end", help="YYYY-MM-DD")
    add_ephemeris_args(parser)
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--verbose", action="store_true")


def add_ephemeris_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--ephemeris", default="", help=f"file name under data/ (default: ${ENV_EPHEMERIS})")
    parser.add_argument("--ephemeris-path", default="", help=f"explicit SPK path (default: ${ENV_EPHEMERIS_PATH})")


def add_location_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--lat", type=float, required=True)
    parser.add_argument("--lon", type=float, required=True)
    parser.add_argument("--elevation", type=float, default=0.0, help="metres above sea level")


def add_store_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--year", type=int, required=True)
    parser.add_argument("--locations", required=True, help="locations JSON")
    parser.add_argument("--db", default="", help="SQLAlchemy URL (default: $FUJICAL_DB_URL)")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def resolve_ephemeris(name_arg: str, path_arg: str) -> EphemerisConfig:
    """CLI/env ephemeris choice; a missing file becomes a skip reason instead of an error."""
    name = (name_arg or "").strip() or os.environ.get(ENV_EPHEMERIS, "").strip() or None
    path_raw = (path_arg or "").strip() or os.environ.get(ENV_EPHEMERIS_PATH, "").strip()
    try:
        path = find_ephemeris(name, Path(path_raw) if path_raw else None)
    except FileNotFoundError as e:
        return EphemerisConfig(name=name, path=None, skip_reason=str(e).splitlines()[0] + f" (set {ENV_EPHEMERIS_PATH})")
    return EphemerisConfig(name=name, path=path, skip_reason=None)


def orchestrator_kwargs(args: argparse.Namespace, eph: EphemerisConfig) -> Dict[str, Any]:
    return dict(
        locations_path=args.locations,
        db_url=args.db or None,
        ephemeris=eph.name,
        ephemeris_path=eph.path,
    )


def resolve_date_range(args: argparse.Namespace) -> Tuple[Optional[date], Optional[date]]:
    if args.start and args.end:
        return date.fromisoformat(args.start), date.fromisoformat(args.end)
    if args.date:
        d = date.fromisoformat(args.date)
        return d, d
    return None, None


def dump_json(obj: object) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def skip(msg: str) -> None:
    print(f"SKIP: {msg}")
    sys.exit(0)
