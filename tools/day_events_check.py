from __future__ import annotations

"""
Direct-path Diamond/Pearl Fuji check for one point over a date range.

Uses:
- fujical.api.public.compute_day_events
"""

import argparse

from fujical.api.public import compute_day_events
from fujical.core.timeutil import iter_dates

from tools.common import (
    add_common_args,
    add_location_args,
    dump_json,
    resolve_date_range,
    resolve_ephemeris,
    setup_logging,
    skip,
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Diamond / Pearl Fuji day events (direct computation)")
    add_common_args(parser)
    add_location_args(parser)
    args = parser.parse_args()
    setup_logging(args.verbose)

    start, end = resolve_date_range(args)
    if start is None or end is None:
        parser.error("--date or --start/--end required")

    eph = resolve_ephemeris(args.ephemeris, args.ephemeris_path)
    if eph.skip_reason:
        skip(eph.skip_reason)

    days = [
        compute_day_events(
            d,
            latitude=args.lat,
            longitude=args.lon,
            elevation=args.elevation,
            ephemeris=eph.name,
            ephemeris_path=eph.path,
        )
        for d in iter_dates(start, end)
    ]

    if args.json:
        dump_json({"days": days})
        return

    g = days[0]
    print(
        f"# bearing={g['fuji_bearing']:.3f}  elevation={g['fuji_elevation']:.3f}  "
        f"distance={g['fuji_distance_km']:.2f} km"
    )
    n = 0
    for day in days:
        for e in day["events"]:
            n += 1
            print(
                f"{e['date']}  {e['phenomenon_type']:<16}  at={e['instant_local']}  "
                f"az_diff={e['azimuth_diff']:.3f}  el_diff={e['elevation_diff']:.3f}  "
                f"{e['accuracy_tier']:<9}  q={e['quality_score']:.2f}"
            )
    print(f"# {n} events in {len(days)} days")


if __name__ == "__main__":
    main()
