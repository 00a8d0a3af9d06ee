"""Command-line interface for pedal_ride.

Run:
    python -m pedal_ride start --bike PP-2024-A7
    python -m pedal_ride end
    python -m pedal_ride simulate --bike PP-2024-A7 --minutes 12 --seed 7
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from time import sleep

from pedal_ride.errors import RideError
from pedal_ride.fare import FarePolicy
from pedal_ride.models import DEFAULT_TZ, Location, RidePatch, RideSession
from pedal_ride.position import TrackingConfig, build_position_source
from pedal_ride.route_io import inspect_route, load_samples, write_route_csv
from pedal_ride.session import RideConfig, RideSessionManager
from pedal_ride.storage import JsonFileStore, MemoryStore, SessionStore
from pedal_ride.timeutils import ManualClock, SystemClock, elapsed_seconds, format_hhmmss, local_time
from pedal_ride.trajectory import TrajectoryAccumulator


def _location_from_args(args: argparse.Namespace) -> Location | None:
    if args.lat is None and args.lng is None:
        return None
    if args.lat is None or args.lng is None:
        raise SystemExit("--lat and --lng must be given together")
    return Location(latitude=args.lat, longitude=args.lng, address=args.address or "")


def _ride_config(args: argparse.Namespace) -> RideConfig:
    fare = FarePolicy(
        base_fare=getattr(args, "base_fare", 10.0),
        per_minute_fare=getattr(args, "per_minute_fare", 5.0),
    )
    return RideConfig(fare=fare, paused_updates=args.paused_updates, tz_name=args.tz)


def _manager(args: argparse.Namespace, store: SessionStore | None = None, clock=None) -> RideSessionManager:
    return RideSessionManager(
        _ride_config(args),
        clock=clock or SystemClock(),
        store=store if store is not None else JsonFileStore(args.state),
    )


def _print_session(session: RideSession, tz_name: str) -> None:
    start = local_time(session.start_time, tz_name)
    print(f"ride={session.id} bike={session.bike_id} status={session.status.value}")
    print(f"start={start.isoformat(sep=' ')} at {session.start_location.address or 'unknown'}")
    if session.end_time is not None:
        end = local_time(session.end_time, tz_name)
        where = session.end_location.address if session.end_location else ""
        print(f"end={end.isoformat(sep=' ')} at {where or 'unknown'}")
    print(
        f"duration={format_hhmmss(session.duration_s)} ({session.duration_s}s), "
        f"distance={session.distance_km:.3f}km, points={len(session.route_points)}"
    )
    print(f"avg_speed={session.average_speed_kmh:.1f}km/h, max_speed={session.max_speed_kmh:.1f}km/h")
    print(
        f"fare={session.total_fare:g} (base={session.base_fare:g}, per_minute={session.per_minute_fare:g})"
    )
    print(
        f"calories={session.calories_burned}, co2_saved={session.co2_saved_kg:.2f}kg, "
        f"air_filtered={session.air_filtered_l:.1f}L"
    )


def _cmd_start(args: argparse.Namespace) -> int:
    manager = _manager(args)
    session = manager.start_ride(args.bike, _location_from_args(args))
    _print_session(session, manager.config.tz_name)
    return 0


def _cmd_update(args: argparse.Namespace) -> int:
    patch = RidePatch(
        duration_s=args.duration,
        distance_km=args.distance,
        average_speed_kmh=args.speed,
        calories_burned=args.calories,
        co2_saved_kg=args.co2,
        air_filtered_l=args.air,
    )
    manager = _manager(args)
    session = manager.update_ride_session(patch)
    if session is None:
        print("no ride updated")
        return 1
    _print_session(session, manager.config.tz_name)
    return 0


def _cmd_locate(args: argparse.Namespace) -> int:
    manager = _manager(args)
    manager.update_gps_location(args.lat, args.lng, args.distance, args.speed)
    session = manager.current_session()
    if session is None:
        print("no current ride")
        return 1
    _print_session(session, manager.config.tz_name)
    return 0


def _cmd_pause(args: argparse.Namespace) -> int:
    session = _manager(args).pause_ride()
    if session is None:
        print("no active ride to pause")
        return 1
    print(f"ride {session.id} paused")
    return 0


def _cmd_resume(args: argparse.Namespace) -> int:
    session = _manager(args).resume_ride()
    if session is None:
        print("no paused ride to resume")
        return 1
    print(f"ride {session.id} resumed")
    return 0


def _cmd_end(args: argparse.Namespace) -> int:
    manager = _manager(args)
    session = manager.end_ride(_location_from_args(args))
    _print_session(session, manager.config.tz_name)
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    manager = _manager(args)
    session = manager.current_session()
    if session is None:
        print("no current ride")
        return 0
    if args.json:
        print(json.dumps(session.to_dict(), ensure_ascii=False, indent=2))
        return 0
    _print_session(session, manager.config.tz_name)
    live = elapsed_seconds(session.start_time, SystemClock().now())
    print(f"elapsed_now={format_hhmmss(live)}")
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    manager = _manager(args)
    history = manager.session_history()
    if args.limit is not None:
        history = history[: args.limit]
    if args.json:
        print(json.dumps([s.to_dict() for s in history], ensure_ascii=False, indent=2))
        return 0
    if not history:
        print("no completed rides")
        return 0
    for s in history:
        start = local_time(s.start_time, manager.config.tz_name)
        print(
            f"{start.isoformat(sep=' ')}  {s.id}  bike={s.bike_id}  "
            f"{format_hhmmss(s.duration_s)}  {s.distance_km:.2f}km  fare={s.total_fare:g}"
        )
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    stats = _manager(args).ride_stats()
    if args.json:
        print(json.dumps(asdict(stats), ensure_ascii=False, indent=2))
        return 0
    print(f"rides={stats.total_rides}")
    print(f"distance={stats.total_distance_km:.2f}km (avg {stats.average_distance_km:.2f}km)")
    print(f"duration={format_hhmmss(stats.total_duration_s)} (avg {format_hhmmss(stats.average_ride_time_s)})")
    print(f"calories={stats.total_calories}")
    print(f"co2_saved={stats.total_co2_saved_kg:.2f}kg, air_filtered={stats.total_air_filtered_l:.1f}L")
    print(f"spent={stats.total_spent:g}")
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    if args.minutes <= 0 or args.tick <= 0:
        raise SystemExit("--minutes and --tick must be positive")

    clock = SystemClock() if args.realtime else ManualClock(SystemClock().now())
    store: SessionStore = JsonFileStore(args.state) if args.persist else MemoryStore()
    manager = _manager(args, store=store, clock=clock)
    start_location = _location_from_args(args) or manager.config.default_start_location
    tracking = TrackingConfig(
        source="replay" if args.replay else "simulated",
        replay_csv=args.replay,
        cadence_s=args.cadence,
        seed=args.seed,
        seed_latitude=start_location.latitude,
        seed_longitude=start_location.longitude,
    )
    tracker = TrajectoryAccumulator(build_position_source(tracking, clock))

    manager.start_ride(args.bike, start_location)
    tracker.start(on_position=manager.position_listener(tracker))

    total_s = args.minutes * 60.0
    elapsed = 0.0
    ticks = 0
    while elapsed < total_s:
        step = min(args.tick, total_s - elapsed)
        if args.realtime:
            sleep(step)
        else:
            clock.advance(step)
        elapsed += step
        ticks += 1
        tracker.poll()
        live = manager.live_update(tracker)
        if live is not None and (ticks % 30 == 0 or elapsed >= total_s):
            pct = 100.0 * elapsed / total_s
            msg = (
                f"\rsimulating: {format_hhmmss(elapsed)} ({pct:5.1f}%) "
                f"distance={live.distance_km:.3f}km fare={live.total_fare:g}"
            )
            print(msg, end="", file=sys.stderr, flush=True)
    print(file=sys.stderr)

    tracker.stop()
    pos = tracker.current_position()
    end_location = Location(pos.latitude, pos.longitude, "Current location") if pos is not None else None
    session = manager.end_ride(end_location)
    _print_session(session, manager.config.tz_name)

    if args.route_out:
        n = write_route_csv(session.route_points, args.route_out, manager.config.tz_name)
        print(f"route exported: {args.route_out} (points={n})")
    return 0


def _cmd_inspect_route(args: argparse.Namespace) -> int:
    samples, summary = load_samples(args.csv)
    res = inspect_route(samples)

    print("### CSV columns")
    print(", ".join(summary.fieldnames))
    print()

    print("### Rows")
    print(f"total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    print()

    if res.start_time is not None and res.end_time is not None:
        print("### Time range (local)")
        start = local_time(res.start_time, args.tz)
        end = local_time(res.end_time, args.tz)
        print(f"start={start.isoformat(sep=' ')}, end={end.isoformat(sep=' ')}")
        print()

    if res.delta is not None:
        print("### Sampling interval (s)")
        print(
            f"count={res.delta.count}, min={res.delta.min_s:.3f}, median={res.delta.median_s:.3f}, "
            f"p95={res.delta.p95_s:.3f}, max={res.delta.max_s:.3f}"
        )
        print()

    print("### Bounding box")
    print(f"lat=[{res.min_lat}, {res.max_lat}], lon=[{res.min_lon}, {res.max_lon}]")
    print()

    print("### Distance (haversine)")
    print(f"{res.distance_km:.3f} km, duplicate_timestamps={res.duplicate_timestamps}")

    if args.json:
        payload = asdict(res) | {
            "rows_total": summary.rows_total,
            "rows_parsed": summary.rows_parsed,
            "rows_skipped": summary.rows_skipped,
            "fieldnames": list(summary.fieldnames),
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    return 0


def _cmd_export_route(args: argparse.Namespace) -> int:
    manager = _manager(args)
    candidates = list(manager.session_history())
    current = manager.current_session()
    if current is not None:
        candidates.insert(0, current)
    if args.ride_id:
        candidates = [s for s in candidates if s.id == args.ride_id]
    if not candidates:
        print("no matching ride", file=sys.stderr)
        return 1
    session = candidates[0]
    n = write_route_csv(session.route_points, args.out, manager.config.tz_name)
    print(f"exported: {args.out} (ride={session.id}, points={n})")
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--state", type=str, default="ride_state.json", help="JSON state file")
    p.add_argument("--tz", type=str, default=DEFAULT_TZ, help="Timezone (IANA) for display")
    p.add_argument(
        "--paused-updates",
        type=str,
        default="accept",
        choices=["accept", "ignore"],
        help="How periodic updates are handled while a ride is paused",
    )


def _add_fare(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-fare", type=float, default=10.0, help="Fare charged at unlock")
    p.add_argument("--per-minute-fare", type=float, default=5.0, help="Fare per started minute")


def _add_location(p: argparse.ArgumentParser) -> None:
    p.add_argument("--lat", type=float, default=None, help="Latitude")
    p.add_argument("--lng", type=float, default=None, help="Longitude")
    p.add_argument("--address", type=str, default=None, help="Human-readable address")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="pedal_ride")
    p.add_argument("-v", "--verbose", action="store_true", help="Log lifecycle events")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_start = sub.add_parser("start", help="Unlock a bike and start a ride")
    _add_common(p_start)
    _add_fare(p_start)
    _add_location(p_start)
    p_start.add_argument("--bike", type=str, required=True, help="Bike identifier")
    p_start.set_defaults(func=_cmd_start)

    p_upd = sub.add_parser("update", help="Merge a metrics update into the current ride")
    _add_common(p_upd)
    p_upd.add_argument("--duration", type=int, default=None, help="Elapsed seconds")
    p_upd.add_argument("--distance", type=float, default=None, help="Cumulative distance (km)")
    p_upd.add_argument("--speed", type=float, default=None, help="Average speed (km/h)")
    p_upd.add_argument("--calories", type=int, default=None)
    p_upd.add_argument("--co2", type=float, default=None, help="CO2 saved (kg)")
    p_upd.add_argument("--air", type=float, default=None, help="Air filtered (L)")
    p_upd.set_defaults(func=_cmd_update)

    p_loc = sub.add_parser("locate", help="Record a GPS fix on the current ride")
    _add_common(p_loc)
    p_loc.add_argument("--lat", type=float, required=True)
    p_loc.add_argument("--lng", type=float, required=True)
    p_loc.add_argument("--distance", type=float, required=True, help="Cumulative distance (km)")
    p_loc.add_argument("--speed", type=float, default=None, help="Speed (km/h)")
    p_loc.set_defaults(func=_cmd_locate)

    for name, func, help_text in (
        ("pause", _cmd_pause, "Pause the active ride"),
        ("resume", _cmd_resume, "Resume the paused ride"),
    ):
        sp = sub.add_parser(name, help=help_text)
        _add_common(sp)
        sp.set_defaults(func=func)

    p_end = sub.add_parser("end", help="End the ride, lock the bike and bill it")
    _add_common(p_end)
    _add_location(p_end)
    p_end.set_defaults(func=_cmd_end)

    p_status = sub.add_parser("status", help="Show the current ride")
    _add_common(p_status)
    p_status.add_argument("--json", action="store_true", help="Print JSON")
    p_status.set_defaults(func=_cmd_status)

    p_hist = sub.add_parser("history", help="List completed rides, most recent first")
    _add_common(p_hist)
    p_hist.add_argument("--limit", type=int, default=None)
    p_hist.add_argument("--json", action="store_true", help="Print JSON")
    p_hist.set_defaults(func=_cmd_history)

    p_stats = sub.add_parser("stats", help="Aggregate statistics over completed rides")
    _add_common(p_stats)
    p_stats.add_argument("--json", action="store_true", help="Print JSON")
    p_stats.set_defaults(func=_cmd_stats)

    p_sim = sub.add_parser("simulate", help="Run a whole ride against simulated or replayed GPS")
    _add_common(p_sim)
    _add_fare(p_sim)
    _add_location(p_sim)
    p_sim.add_argument("--bike", type=str, default="PP-2024-A7", help="Bike identifier")
    p_sim.add_argument("--minutes", type=float, default=10.0, help="Ride length in minutes")
    p_sim.add_argument("--tick", type=float, default=1.0, help="Seconds between live updates")
    p_sim.add_argument("--cadence", type=float, default=5.0, help="Seconds between synthetic GPS samples")
    p_sim.add_argument("--seed", type=int, default=None, help="Random seed (reproducible)")
    p_sim.add_argument("--replay", type=str, default=None, help="Route CSV to replay instead of synthetic GPS")
    p_sim.add_argument("--realtime", action="store_true", help="Sleep between ticks instead of a manual clock")
    p_sim.add_argument("--persist", action="store_true", help="Write the ride to --state")
    p_sim.add_argument("--route-out", type=str, default=None, help="Export the ride's route to this CSV")
    p_sim.set_defaults(func=_cmd_simulate)

    p_ins = sub.add_parser("inspect-route", help="Analyze a route CSV (time range, sampling, distance)")
    p_ins.add_argument("--csv", type=str, default="route.csv", help="Input CSV path")
    p_ins.add_argument("--tz", type=str, default=DEFAULT_TZ, help="Timezone (IANA)")
    p_ins.add_argument("--json", action="store_true", help="Also print JSON")
    p_ins.set_defaults(func=_cmd_inspect_route)

    p_exp = sub.add_parser("export-route", help="Export the route of a ride to CSV")
    _add_common(p_exp)
    p_exp.add_argument("--ride-id", type=str, default=None, help="Ride id (default: latest)")
    p_exp.add_argument("--out", type=str, default="route.csv", help="Output CSV path")
    p_exp.set_defaults(func=_cmd_export_route)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except RideError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
