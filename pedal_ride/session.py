"""Ride session lifecycle: start, periodic updates, pause/resume, end.

One manager owns one rider's "current session" slot plus that rider's
history. Every transition swaps in a new immutable :class:`RideSession`
snapshot under a lock, so readers either see the old snapshot or the new one,
never something in between.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Literal

from pedal_ride.errors import ConflictError, NotFoundError, ValidationError
from pedal_ride.fare import FarePolicy, compute_fare, impact_for
from pedal_ride.geo import validate_coordinate
from pedal_ride.history import SessionHistory
from pedal_ride.models import (
    DEFAULT_END_LOCATION,
    DEFAULT_START_LOCATION,
    DEFAULT_TZ,
    CoordinateSample,
    Location,
    RidePatch,
    RideSession,
    RideStats,
    RideStatus,
    TrajectoryPoint,
)
from pedal_ride.storage import MemoryStore, SessionStore, StoredState
from pedal_ride.timeutils import Clock, SystemClock, elapsed_seconds, ensure_aware, tzinfo_from_name
from pedal_ride.trajectory import TrajectoryAccumulator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RideConfig:
    """Parameters fixed for every ride started by a manager."""

    fare: FarePolicy = field(default_factory=FarePolicy)
    default_start_location: Location = DEFAULT_START_LOCATION
    default_end_location: Location = DEFAULT_END_LOCATION
    # What to do with periodic updates that arrive while the ride is paused:
    # "accept" merges them as usual, "ignore" drops them and returns None.
    paused_updates: Literal["accept", "ignore"] = "accept"
    # Timezone rides are displayed and exported in.
    tz_name: str = DEFAULT_TZ

    def __post_init__(self) -> None:
        if self.paused_updates not in ("accept", "ignore"):
            raise ValidationError(f"paused_updates must be 'accept' or 'ignore', got {self.paused_updates!r}")
        validate_coordinate(self.default_start_location.latitude, self.default_start_location.longitude)
        validate_coordinate(self.default_end_location.latitude, self.default_end_location.longitude)
        try:
            tzinfo_from_name(self.tz_name)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc


def _check_non_negative(name: str, value: float | None) -> None:
    if value is None:
        return
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"{name} must be a non-negative number, got {value!r}")


def _validate_patch(patch: RidePatch) -> None:
    _check_non_negative("duration_s", patch.duration_s)
    _check_non_negative("distance_km", patch.distance_km)
    _check_non_negative("average_speed_kmh", patch.average_speed_kmh)
    _check_non_negative("calories_burned", patch.calories_burned)
    _check_non_negative("co2_saved_kg", patch.co2_saved_kg)
    _check_non_negative("air_filtered_l", patch.air_filtered_l)
    for p in patch.route_points:
        validate_coordinate(p.latitude, p.longitude)
        _check_non_negative("route point distance_km", p.distance_km)


def _keep_max(current: float, new: float | None) -> float:
    return current if new is None else max(current, new)


class RideSessionManager:
    """Ride session state machine for a single rider.

    Args:
        config: Fare policy and defaults; fixed for the manager's lifetime.
        clock: Source of "now" (wall clock by default).
        store: Persistence port; state is loaded on construction and saved
            after every change.
        id_factory: Builds a session id; defaults to ``ride_<epoch ms>_<hex>``.
    """

    def __init__(
        self,
        config: RideConfig | None = None,
        *,
        clock: Clock | None = None,
        store: SessionStore | None = None,
        id_factory: Callable[[datetime], str] | None = None,
    ) -> None:
        self._cfg = config or RideConfig()
        self._clock = clock or SystemClock()
        self._store = store or MemoryStore()
        self._id_factory = id_factory or _default_session_id
        self._lock = threading.RLock()

        state = self._store.load()
        self._current: RideSession | None = None
        if state.current is not None:
            if state.current.is_open:
                self._current = state.current
                logger.info("restored %s ride %s", state.current.status.value, state.current.id)
            else:
                logger.warning("stored current ride %s is already completed; dropping it", state.current.id)
        self._history = SessionHistory(state.history)

    @property
    def config(self) -> RideConfig:
        return self._cfg

    # -- lifecycle ---------------------------------------------------------

    def start_ride(self, bike_id: str, start_location: Location | None = None) -> RideSession:
        """Start a ride on ``bike_id``.

        Raises:
            ConflictError: If a ride is already active or paused.
            ValidationError: If the bike id is empty or the location is invalid.
        """

        if not isinstance(bike_id, str) or not bike_id.strip():
            raise ValidationError("bike_id must be a non-empty string")
        location = start_location or self._cfg.default_start_location
        validate_coordinate(location.latitude, location.longitude)

        with self._lock:
            if self._current is not None:
                raise ConflictError(f"ride {self._current.id} is already {self._current.status.value}")

            now = ensure_aware(self._clock.now())
            fare = self._cfg.fare
            session = RideSession(
                id=self._id_factory(now),
                bike_id=bike_id.strip(),
                start_time=now,
                start_location=location,
                base_fare=fare.base_fare,
                per_minute_fare=fare.per_minute_fare,
                total_fare=fare.base_fare,
                status=RideStatus.ACTIVE,
            )
            self._current = session
            self._persist()
        logger.info("ride %s started on bike %s", session.id, session.bike_id)
        return session

    def update_ride_session(self, patch: RidePatch) -> RideSession | None:
        """Merge a periodic update into the current ride.

        Returns None (and changes nothing) when there is no current ride, or
        when the ride is paused and ``paused_updates`` is "ignore".

        Raises:
            ValidationError: If the patch carries negative or invalid values.
        """

        with self._lock:
            cur = self._current
            if cur is None:
                logger.debug("update ignored: no current ride")
                return None
            if cur.status is RideStatus.PAUSED and self._cfg.paused_updates == "ignore":
                logger.debug("update ignored: ride %s is paused", cur.id)
                return None
            _validate_patch(patch)

            duration = cur.duration_s if patch.duration_s is None else int(patch.duration_s)
            points = list(cur.route_points)
            last_km = points[-1].distance_km if points else 0.0
            max_speed = _keep_max(cur.max_speed_kmh, patch.average_speed_kmh)
            for p in patch.route_points:
                if p.distance_km < last_km:
                    p = replace(p, distance_km=last_km)
                last_km = p.distance_km
                max_speed = _keep_max(max_speed, p.speed_kmh)
                points.append(p)

            updated = replace(
                cur,
                duration_s=duration,
                total_fare=compute_fare(FarePolicy(cur.base_fare, cur.per_minute_fare), duration),
                distance_km=_keep_max(cur.distance_km, patch.distance_km),
                average_speed_kmh=(
                    cur.average_speed_kmh if patch.average_speed_kmh is None else patch.average_speed_kmh
                ),
                max_speed_kmh=max_speed,
                calories_burned=int(_keep_max(cur.calories_burned, patch.calories_burned)),
                co2_saved_kg=_keep_max(cur.co2_saved_kg, patch.co2_saved_kg),
                air_filtered_l=_keep_max(cur.air_filtered_l, patch.air_filtered_l),
                route_points=tuple(points),
            )
            self._current = updated
            self._persist()
        return updated

    def update_gps_location(
        self,
        lat: float,
        lng: float,
        distance_km: float,
        speed_kmh: float | None = None,
        *,
        captured_at: datetime | None = None,
        active_only: bool = False,
    ) -> None:
        """Record a position fix on the current ride.

        ``distance_km`` is the authoritative cumulative distance from the
        trajectory accumulator; it replaces the session's distance rather than
        being added to it. Does nothing without a current ride, or with
        ``active_only`` when the ride is not active.

        Raises:
            ValidationError: If the coordinates, distance or speed are invalid.
        """

        with self._lock:
            cur = self._current
            if cur is None:
                logger.debug("location ignored: no current ride")
                return
            if active_only and cur.status is not RideStatus.ACTIVE:
                logger.debug("location ignored: ride %s is %s", cur.id, cur.status.value)
                return
            if cur.status is RideStatus.PAUSED and self._cfg.paused_updates == "ignore":
                logger.debug("location ignored: ride %s is paused", cur.id)
                return
            validate_coordinate(lat, lng)
            _check_non_negative("distance_km", distance_km)
            _check_non_negative("speed_kmh", speed_kmh)

            # Cumulative distance never goes backwards.
            distance = max(cur.distance_km, float(distance_km))
            point = TrajectoryPoint(
                latitude=lat,
                longitude=lng,
                captured_at=ensure_aware(captured_at or self._clock.now()),
                distance_km=distance,
                speed_kmh=speed_kmh,
            )
            self._current = replace(
                cur,
                route_points=cur.route_points + (point,),
                distance_km=distance,
                average_speed_kmh=cur.average_speed_kmh if speed_kmh is None else speed_kmh,
                max_speed_kmh=_keep_max(cur.max_speed_kmh, speed_kmh),
            )
            self._persist()

    def pause_ride(self) -> RideSession | None:
        """Pause an active ride; None unless the ride is exactly active."""

        with self._lock:
            cur = self._current
            if cur is None or cur.status is not RideStatus.ACTIVE:
                logger.debug("pause ignored: no active ride")
                return None
            self._current = replace(cur, status=RideStatus.PAUSED)
            self._persist()
            paused = self._current
        logger.info("ride %s paused", paused.id)
        return paused

    def resume_ride(self) -> RideSession | None:
        """Resume a paused ride; None unless the ride is exactly paused."""

        with self._lock:
            cur = self._current
            if cur is None or cur.status is not RideStatus.PAUSED:
                logger.debug("resume ignored: no paused ride")
                return None
            self._current = replace(cur, status=RideStatus.ACTIVE)
            self._persist()
            resumed = self._current
        logger.info("ride %s resumed", resumed.id)
        return resumed

    def end_ride(self, end_location: Location | None = None) -> RideSession:
        """Finalize the current ride and move it to history.

        Duration is recomputed from the wall clock; it is the single source of
        truth for the final fare and impact metrics, whatever earlier updates
        said.

        Raises:
            NotFoundError: If there is no current ride.
            ValidationError: If the end location is invalid.
        """

        location = end_location or self._cfg.default_end_location
        validate_coordinate(location.latitude, location.longitude)

        with self._lock:
            cur = self._current
            if cur is None:
                raise NotFoundError("no active ride to end")

            end_time = ensure_aware(self._clock.now())
            duration = elapsed_seconds(cur.start_time, end_time)
            impact = impact_for(duration)
            completed = replace(
                cur,
                status=RideStatus.COMPLETED,
                end_time=end_time,
                end_location=location,
                duration_s=duration,
                total_fare=compute_fare(FarePolicy(cur.base_fare, cur.per_minute_fare), duration),
                calories_burned=impact.calories_burned,
                co2_saved_kg=impact.co2_saved_kg,
                air_filtered_l=impact.air_filtered_l,
            )
            self._history.append(completed)
            self._current = None
            self._persist()
        logger.info(
            "ride %s ended: %ss, %.3f km, fare %s",
            completed.id,
            completed.duration_s,
            completed.distance_km,
            completed.total_fare,
        )
        return completed

    # -- driver helpers ----------------------------------------------------

    def live_update(self, tracker: TrajectoryAccumulator) -> RideSession | None:
        """One tick of the periodic driver loop.

        Duration comes from the clock, distance and average speed from the
        tracker, impact metrics from the duration. Only active rides are
        touched.
        """

        with self._lock:
            cur = self._current
            if cur is None or cur.status is not RideStatus.ACTIVE:
                return None
            duration = elapsed_seconds(cur.start_time, self._clock.now())
            impact = impact_for(duration)
            has_route = bool(tracker.route_points())
            return self.update_ride_session(
                RidePatch(
                    duration_s=duration,
                    distance_km=tracker.total_distance() if has_route else None,
                    average_speed_kmh=tracker.average_speed() if has_route else None,
                    calories_burned=impact.calories_burned,
                    co2_saved_kg=impact.co2_saved_kg,
                    air_filtered_l=impact.air_filtered_l,
                )
            )

    def position_listener(self, tracker: TrajectoryAccumulator) -> Callable[[CoordinateSample], None]:
        """Build an ``on_position`` callback that feeds fixes into the active ride."""

        def _on_position(sample: CoordinateSample) -> None:
            self.update_gps_location(
                sample.latitude,
                sample.longitude,
                tracker.total_distance(),
                tracker.average_speed(),
                captured_at=sample.captured_at,
                active_only=True,
            )

        return _on_position

    # -- reads -------------------------------------------------------------

    def current_session(self) -> RideSession | None:
        return self._current

    def session_history(self) -> tuple[RideSession, ...]:
        with self._lock:
            return self._history.entries()

    def ride_stats(self) -> RideStats:
        with self._lock:
            return self._history.aggregate()

    def _persist(self) -> None:
        self._store.save(StoredState(current=self._current, history=self._history.entries()))


def _default_session_id(now: datetime) -> str:
    return f"ride_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
