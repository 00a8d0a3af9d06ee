from __future__ import annotations

import argparse
import csv
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo

from pedal_ride.geo import offset_point
from pedal_ride.route_io import ROUTE_FIELDS

TZ: Final[str] = "Asia/Kolkata"


@dataclass(frozen=True, slots=True)
class Landmark:
    name: str
    lat: float
    lon: float


def generate_route(
    *,
    rows: int,
    seed: int,
    start_local: datetime,
    start: Landmark,
    interval_s: float,
) -> list[dict[str, str]]:
    """Generate a fake ride route with realistic-ish pedalling and stops."""

    rng = random.Random(seed)
    tz = ZoneInfo(TZ)
    cur = start_local.replace(tzinfo=tz)
    lat, lon = start.lat, start.lon
    heading = rng.uniform(0, 360)

    out: list[dict[str, str]] = []
    for i in range(rows):
        if i > 0:
            # Mostly cruising at 10-20 km/h, sometimes waiting at a signal
            speed = 0.0 if rng.random() < 0.1 else rng.uniform(10.0, 20.0)
            heading = (heading + rng.uniform(-25, 25)) % 360
            step_km = speed * interval_s / 3600.0
            rad = math.radians(heading)
            lat, lon = offset_point(lat, lon, step_km * math.cos(rad), step_km * math.sin(rad))
            cur = cur + timedelta(seconds=interval_s)
        else:
            speed = 0.0

        out.append(
            {
                "timestamp": cur.isoformat(),
                "latitude": f"{lat:.7f}",
                "longitude": f"{lon:.7f}",
                "accuracy_m": f"{rng.choice([3.0, 5.0, 8.0, 12.0, 20.0]):.1f}",
                "speed_kmh": f"{speed:.1f}",
                "heading_deg": f"{heading:.1f}",
            }
        )
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake route CSV for replay/demo (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/route.csv", help="Output CSV path")
    p.add_argument("--rows", type=int, default=180, help="Number of samples")
    p.add_argument("--interval", type=float, default=5.0, help="Seconds between samples")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-01 08:00:00",
        help="Start local time in Asia/Kolkata, e.g. '2025-01-01 08:00:00'",
    )
    args = p.parse_args()

    start_local = datetime.fromisoformat(args.start)
    start = Landmark("connaught_place", 28.6139, 77.2090)

    rows = generate_route(
        rows=args.rows,
        seed=args.seed,
        start_local=start_local,
        start=start,
        interval_s=args.interval,
    )
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=list(ROUTE_FIELDS), extrasaction="ignore")
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
