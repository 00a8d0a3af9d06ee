"""CSV input/output and inspection for recorded ride routes."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from pedal_ride.geo import distance_km, validate_coordinate
from pedal_ride.models import CoordinateSample, TrajectoryPoint
from pedal_ride.timeutils import DeltaStats, delta_stats, local_time, parse_iso

logger = logging.getLogger(__name__)

ROUTE_FIELDS: tuple[str, ...] = (
    "timestamp",
    "time_local",
    "latitude",
    "longitude",
    "distance_km",
    "accuracy_m",
    "speed_kmh",
    "heading_deg",
)


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_opt_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value.strip())


def _parse_row(row: dict[str, str]) -> CoordinateSample:
    lat = float(row["latitude"].strip())
    lon = float(row["longitude"].strip())
    validate_coordinate(lat, lon)
    return CoordinateSample(
        latitude=lat,
        longitude=lon,
        captured_at=parse_iso(row["timestamp"]),
        accuracy_m=_parse_opt_float(row.get("accuracy_m")),
        speed_kmh=_parse_opt_float(row.get("speed_kmh")),
        heading_deg=_parse_opt_float(row.get("heading_deg")),
    )


def load_samples(csv_path: str | Path) -> tuple[list[CoordinateSample], CsvSummary]:
    """Load all samples into memory, sorted by capture time.

    Args:
        csv_path: Path to the route CSV.

    Returns:
        (samples, summary)
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[CoordinateSample] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_parse_row(row))
            except (KeyError, ValueError, TypeError, AttributeError):
                continue

    parsed.sort(key=lambda s: s.captured_at)
    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("skipped %s unparseable rows in %s", summary.rows_skipped, p)
    return parsed, summary


def write_route_csv(points: Iterable[TrajectoryPoint], out_path: str | Path, tz_name: str) -> int:
    """Export trajectory points to CSV.

    The output can be fed back to :func:`load_samples` (the extra
    ``time_local``/``distance_km`` columns are ignored on read).

    Returns:
        Number of rows written.
    """

    p = Path(out_path)
    n = 0
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=list(ROUTE_FIELDS))
        w.writeheader()
        for pt in points:
            w.writerow(
                {
                    "timestamp": pt.captured_at.isoformat(),
                    "time_local": local_time(pt.captured_at, tz_name).isoformat(sep=" "),
                    "latitude": pt.latitude,
                    "longitude": pt.longitude,
                    "distance_km": f"{pt.distance_km:.6f}",
                    "accuracy_m": "" if pt.accuracy_m is None else pt.accuracy_m,
                    "speed_kmh": "" if pt.speed_kmh is None else pt.speed_kmh,
                    "heading_deg": "" if pt.heading_deg is None else pt.heading_deg,
                }
            )
            n += 1
    return n


@dataclass(frozen=True, slots=True)
class RouteSummary:
    """High-level route inspection result."""

    points: int
    start_time: datetime | None
    end_time: datetime | None
    delta: DeltaStats | None
    min_lat: float | None
    max_lat: float | None
    min_lon: float | None
    max_lon: float | None
    duplicate_timestamps: int
    distance_km: float


def inspect_route(points: Sequence[TrajectoryPoint | CoordinateSample]) -> RouteSummary:
    """Inspect already-loaded points or samples."""

    if not points:
        return RouteSummary(
            points=0,
            start_time=None,
            end_time=None,
            delta=None,
            min_lat=None,
            max_lat=None,
            min_lon=None,
            max_lon=None,
            duplicate_timestamps=0,
            distance_km=0.0,
        )

    times = sorted(p.captured_at for p in points)
    dupe = 0
    for i in range(1, len(times)):
        if times[i] == times[i - 1]:
            dupe += 1

    lats = [p.latitude for p in points]
    lons = [p.longitude for p in points]
    last = points[-1]
    if isinstance(last, TrajectoryPoint):
        distance = last.distance_km
    else:
        distance = sum(distance_km(points[i - 1], points[i]) for i in range(1, len(points)))
    return RouteSummary(
        points=len(points),
        start_time=times[0],
        end_time=times[-1],
        delta=delta_stats(times),
        min_lat=min(lats),
        max_lat=max(lats),
        min_lon=min(lons),
        max_lon=max(lons),
        duplicate_timestamps=dupe,
        distance_km=distance,
    )
