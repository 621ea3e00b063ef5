from __future__ import annotations

"""
Health / statistics check for a precomputed year.

Uses:
- fujical.api.public.health_check
- fujical.api.public.year_statistics
"""

import argparse

from fujical.api.public import health_check, year_statistics

from tools.common import (
    add_ephemeris_args,
    add_store_args,
    dump_json,
    orchestrator_kwargs,
    resolve_ephemeris,
    setup_logging,
    skip,
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Precomputed year health check")
    add_store_args(parser)
    add_ephemeris_args(parser)
    parser.add_argument("--stats", action="store_true", help="also print year statistics")
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    setup_logging(args.verbose)

    eph = resolve_ephemeris(args.ephemeris, args.ephemeris_path)
    if eph.skip_reason:
        skip(eph.skip_reason)

    kwargs = orchestrator_kwargs(args, eph)
    report = health_check(args.year, **kwargs)
    stats = year_statistics(args.year, **kwargs) if args.stats else None

    if args.json:
        payload = {"health": report}
        if stats is not None:
            payload["statistics"] = stats
        dump_json(payload)
        return

    print(f"# {args.year}: {'healthy' if report['healthy'] else 'UNHEALTHY'}")
    for c in report["checks"]:
        mark = "ok" if c["ok"] else "NG"
        print(f"{c['stage']:<7} {mark}  {c['detail']}")
    for r in report["recommendations"]:
        print(f"- {r}")

    if stats is not None:
        print("\n# Statistics")
        print(f"snapshots={stats['snapshots']}  candidates={stats['candidates']}  events={stats['events']}")
        for k, v in stats["by_type"].items():
            print(f"  {k:<16} {v}")
        for k, v in stats["by_tier"].items():
            print(f"  {k:<16} {v}")
        if stats["average_quality"] is not None:
            print(f"  average quality  {stats['average_quality']:.3f}")


if __name__ == "__main__":
    main()
