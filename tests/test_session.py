"""
Ride Session Tests
==================

Lifecycle transitions, billing on end, metric merging and the live driver
helpers.
"""

import math
from datetime import timedelta

import pytest

from pedal_ride.errors import ConflictError, NotFoundError, ValidationError
from pedal_ride.fare import FarePolicy
from pedal_ride.models import CoordinateSample, Location, RidePatch, RideStatus, TrajectoryPoint
from pedal_ride.session import RideConfig, RideSessionManager
from pedal_ride.storage import MemoryStore, StoredState
from pedal_ride.trajectory import TrajectoryAccumulator

from conftest import T0

ONE_KM_DEG = math.degrees(1.0 / 6371.0)


class IdleSource:
    def start(self, on_sample):
        pass

    def stop(self):
        pass

    def current_position(self):
        return None

    def poll(self, now=None):
        return 0


def _point(lat, lon, km, seconds=0, speed=None):
    return TrajectoryPoint(
        latitude=lat,
        longitude=lon,
        captured_at=T0 + timedelta(seconds=seconds),
        distance_km=km,
        speed_kmh=speed,
    )


class TestStartRide:
    """Tests for start_ride."""

    def test_new_ride_is_active_at_base_fare(self, manager):
        s = manager.start_ride("BIKE-1")
        assert s.id == "ride_1"
        assert s.bike_id == "BIKE-1"
        assert s.status is RideStatus.ACTIVE
        assert s.start_time == T0
        assert s.duration_s == 0
        assert s.distance_km == 0.0
        assert s.total_fare == 10.0
        assert s.base_fare == 10.0
        assert s.per_minute_fare == 5.0
        assert s.route_points == ()
        assert s.end_time is None
        assert s.end_location is None
        assert manager.current_session() is s

    def test_default_start_location(self, manager):
        s = manager.start_ride("BIKE-1")
        assert s.start_location == manager.config.default_start_location

    def test_explicit_start_location(self, manager):
        loc = Location(41.0082, 28.9784, "Sultanahmet")
        assert manager.start_ride("BIKE-1", loc).start_location == loc

    def test_second_start_conflicts(self, manager):
        first = manager.start_ride("BIKE-1")
        with pytest.raises(ConflictError):
            manager.start_ride("BIKE-2")
        assert manager.current_session() is first

    def test_start_while_paused_conflicts(self, manager):
        manager.start_ride("BIKE-1")
        manager.pause_ride()
        with pytest.raises(ConflictError):
            manager.start_ride("BIKE-2")

    @pytest.mark.parametrize("bike_id", ["", "   "])
    def test_empty_bike_id(self, manager, bike_id):
        with pytest.raises(ValidationError):
            manager.start_ride(bike_id)
        assert manager.current_session() is None

    def test_invalid_location(self, manager):
        with pytest.raises(ValidationError):
            manager.start_ride("BIKE-1", Location(120.0, 0.0))

    def test_fare_policy_is_copied_onto_session(self, clock):
        m = RideSessionManager(RideConfig(fare=FarePolicy(2.0, 1.5)), clock=clock)
        s = m.start_ride("BIKE-1")
        assert (s.base_fare, s.per_minute_fare, s.total_fare) == (2.0, 1.5, 2.0)

    def test_default_ids_are_unique(self, clock):
        m = RideSessionManager(clock=clock)
        first = m.start_ride("BIKE-1")
        m.end_ride()
        second = m.start_ride("BIKE-1")
        assert first.id.startswith("ride_")
        assert first.id != second.id


class TestEndRide:
    """Tests for end_ride."""

    def test_thirty_second_ride(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(30)
        s = manager.end_ride()
        assert s.status is RideStatus.COMPLETED
        assert s.duration_s == 30
        assert s.total_fare == 15.0
        assert s.calories_burned == 5
        assert s.co2_saved_kg == 0.4
        assert s.air_filtered_l == 1.2
        assert s.end_time == T0 + timedelta(seconds=30)
        assert s.end_location == manager.config.default_end_location
        assert manager.current_session() is None
        assert manager.session_history() == (s,)

    def test_ten_minute_ride(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(600)
        s = manager.end_ride()
        assert s.total_fare == 60.0
        assert s.calories_burned == 100
        assert s.co2_saved_kg == 8.0
        assert s.air_filtered_l == 23.0

    def test_sub_second_floors(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(61.9)
        s = manager.end_ride()
        assert s.duration_s == 61
        assert s.total_fare == 20.0

    def test_duration_ignores_earlier_updates(self, manager, clock):
        manager.start_ride("BIKE-1")
        manager.update_ride_session(RidePatch(duration_s=3000, calories_burned=500))
        clock.advance(45)
        s = manager.end_ride()
        assert s.duration_s == 45
        assert s.total_fare == 15.0
        assert s.calories_burned == 7

    def test_keeps_tracked_distance_and_route(self, manager, clock):
        manager.start_ride("BIKE-1")
        manager.update_gps_location(28.6139, 77.209, 0.0)
        manager.update_gps_location(28.62, 77.21, 0.7, 12.0)
        clock.advance(120)
        s = manager.end_ride(Location(28.62, 77.21, "Janpath"))
        assert s.distance_km == 0.7
        assert len(s.route_points) == 2
        assert s.end_location.address == "Janpath"

    def test_end_paused_ride(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(30)
        manager.pause_ride()
        clock.advance(90)
        s = manager.end_ride()
        # Paused time is still billed.
        assert s.duration_s == 120
        assert s.status is RideStatus.COMPLETED

    def test_no_current_ride(self, manager):
        with pytest.raises(NotFoundError):
            manager.end_ride()

    def test_history_is_most_recent_first(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(60)
        first = manager.end_ride()
        manager.start_ride("BIKE-2")
        clock.advance(60)
        second = manager.end_ride()
        assert [s.id for s in manager.session_history()] == [second.id, first.id]

    def test_completed_snapshot_is_frozen(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(30)
        s = manager.end_ride()
        manager.start_ride("BIKE-2")
        manager.update_ride_session(RidePatch(distance_km=9.0))
        assert manager.session_history()[0] == s
        assert manager.session_history()[0].distance_km == 0.0


class TestPauseResume:
    """Tests for pause_ride and resume_ride."""

    def test_pause_and_resume(self, manager):
        manager.start_ride("BIKE-1")
        paused = manager.pause_ride()
        assert paused.status is RideStatus.PAUSED
        resumed = manager.resume_ride()
        assert resumed.status is RideStatus.ACTIVE

    def test_noop_without_ride(self, manager):
        assert manager.pause_ride() is None
        assert manager.resume_ride() is None

    def test_pause_twice(self, manager):
        manager.start_ride("BIKE-1")
        manager.pause_ride()
        assert manager.pause_ride() is None
        assert manager.current_session().status is RideStatus.PAUSED

    def test_resume_active(self, manager):
        manager.start_ride("BIKE-1")
        assert manager.resume_ride() is None
        assert manager.current_session().status is RideStatus.ACTIVE


class TestUpdateRideSession:
    """Tests for update_ride_session."""

    def test_no_ride(self, manager):
        assert manager.update_ride_session(RidePatch(duration_s=10)) is None

    @pytest.mark.parametrize("seconds", [0, 1, 59, 60, 61, 300, 3599])
    def test_fare_follows_duration(self, manager, seconds):
        manager.start_ride("BIKE-1")
        s = manager.update_ride_session(RidePatch(duration_s=seconds))
        assert s.total_fare == 10.0 + math.ceil(seconds / 60) * 5.0

    def test_fare_after_many_updates(self, manager):
        manager.start_ride("BIKE-1")
        for d in range(0, 200, 7):
            s = manager.update_ride_session(RidePatch(duration_s=d))
            assert s.total_fare == 10.0 + math.ceil(d / 60) * 5.0

    def test_absent_fields_kept(self, manager):
        manager.start_ride("BIKE-1")
        manager.update_ride_session(RidePatch(duration_s=90, distance_km=0.4, co2_saved_kg=1.2))
        s = manager.update_ride_session(RidePatch(average_speed_kmh=11.0))
        assert s.duration_s == 90
        assert s.total_fare == 20.0
        assert s.distance_km == 0.4
        assert s.co2_saved_kg == 1.2
        assert s.average_speed_kmh == 11.0

    def test_distance_never_decreases(self, manager):
        manager.start_ride("BIKE-1")
        manager.update_ride_session(RidePatch(distance_km=1.5))
        s = manager.update_ride_session(RidePatch(distance_km=1.2))
        assert s.distance_km == 1.5
        s = manager.update_ride_session(RidePatch(distance_km=1.8))
        assert s.distance_km == 1.8

    def test_route_point_distance_clamped(self, manager):
        manager.start_ride("BIKE-1")
        s = manager.update_ride_session(
            RidePatch(route_points=(_point(0, 0, 0.5), _point(0, 0.001, 0.3), _point(0, 0.002, 0.9)))
        )
        assert [p.distance_km for p in s.route_points] == [0.5, 0.5, 0.9]

    def test_max_speed_is_running_max(self, manager):
        manager.start_ride("BIKE-1")
        manager.update_ride_session(RidePatch(average_speed_kmh=12.0))
        manager.update_ride_session(RidePatch(route_points=(_point(0, 0, 0, speed=18.5),)))
        s = manager.update_ride_session(RidePatch(average_speed_kmh=9.0))
        assert s.average_speed_kmh == 9.0
        assert s.max_speed_kmh == 18.5

    def test_status_and_identity_untouched(self, manager):
        started = manager.start_ride("BIKE-1")
        s = manager.update_ride_session(RidePatch(duration_s=60))
        assert (s.id, s.bike_id, s.start_time, s.status) == (
            started.id,
            started.bike_id,
            started.start_time,
            RideStatus.ACTIVE,
        )
        assert s.end_time is None

    @pytest.mark.parametrize(
        "patch",
        [
            RidePatch(duration_s=-1),
            RidePatch(distance_km=-0.1),
            RidePatch(average_speed_kmh=float("nan")),
            RidePatch(route_points=(_point(95.0, 0.0, 0.0),)),
        ],
    )
    def test_invalid_patch(self, manager, patch):
        before = manager.start_ride("BIKE-1")
        with pytest.raises(ValidationError):
            manager.update_ride_session(patch)
        assert manager.current_session() is before

    def test_paused_updates_accepted_by_default(self, manager):
        manager.start_ride("BIKE-1")
        manager.pause_ride()
        s = manager.update_ride_session(RidePatch(distance_km=0.3))
        assert s.distance_km == 0.3
        assert s.status is RideStatus.PAUSED

    def test_paused_updates_ignored(self, clock):
        m = RideSessionManager(RideConfig(paused_updates="ignore"), clock=clock)
        m.start_ride("BIKE-1")
        paused = m.pause_ride()
        assert m.update_ride_session(RidePatch(distance_km=0.3)) is None
        m.update_gps_location(28.6, 77.2, 0.5)
        assert m.current_session() is paused

    def test_bad_paused_policy(self):
        with pytest.raises(ValidationError):
            RideConfig(paused_updates="drop")

    def test_bad_timezone(self):
        with pytest.raises(ValidationError):
            RideConfig(tz_name="Not/AZone")


class TestUpdateGpsLocation:
    """Tests for update_gps_location."""

    def test_appends_point_and_overwrites_distance(self, manager, clock):
        manager.start_ride("BIKE-1")
        assert manager.update_gps_location(28.6139, 77.209, 0.0) is None
        clock.advance(5)
        manager.update_gps_location(28.614, 77.2095, 0.05, 14.0)
        clock.advance(5)
        manager.update_gps_location(28.6145, 77.21, 0.11, 16.0)
        s = manager.current_session()
        assert len(s.route_points) == 3
        assert s.distance_km == 0.11
        assert s.route_points[-1].distance_km == 0.11
        assert s.route_points[-1].captured_at == T0 + timedelta(seconds=10)
        assert s.average_speed_kmh == 16.0
        assert s.max_speed_kmh == 16.0

    def test_speed_optional(self, manager):
        manager.start_ride("BIKE-1")
        manager.update_gps_location(28.6, 77.2, 0.2, 13.0)
        manager.update_gps_location(28.6, 77.2, 0.3)
        s = manager.current_session()
        assert s.average_speed_kmh == 13.0
        assert s.route_points[-1].speed_kmh is None

    def test_distance_never_decreases(self, manager):
        manager.start_ride("BIKE-1")
        manager.update_gps_location(28.6, 77.2, 0.8)
        manager.update_gps_location(28.6, 77.2, 0.5)
        s = manager.current_session()
        assert s.distance_km == 0.8
        assert [p.distance_km for p in s.route_points] == [0.8, 0.8]

    def test_no_ride(self, manager):
        assert manager.update_gps_location(28.6, 77.2, 0.1) is None
        assert manager.current_session() is None

    def test_invalid_coordinate(self, manager):
        manager.start_ride("BIKE-1")
        with pytest.raises(ValidationError):
            manager.update_gps_location(28.6, 181.0, 0.1)
        assert manager.current_session().route_points == ()


class TestLiveDriver:
    """Tests for live_update and position_listener."""

    def test_one_km_pair_reaches_the_session(self, manager, clock):
        manager.start_ride("BIKE-1")
        tracker = TrajectoryAccumulator(IdleSource())
        tracker.start(on_position=manager.position_listener(tracker))
        tracker.record(CoordinateSample(0.0, 0.0, T0))
        tracker.record(CoordinateSample(ONE_KM_DEG, 0.0, T0 + timedelta(seconds=240)))

        assert tracker.total_distance() == pytest.approx(1.0, abs=1e-9)
        s = manager.current_session()
        assert s.distance_km == pytest.approx(1.0, abs=1e-9)
        assert len(s.route_points) == 2
        assert s.average_speed_kmh == pytest.approx(15.0)

    def test_listener_rechecks_status_when_writing(self, manager):
        manager.start_ride("BIKE-1")

        class PausingTracker(TrajectoryAccumulator):
            def average_speed(self):
                # The rider pauses while the fix is being prepared.
                manager.pause_ride()
                return super().average_speed()

        tracker = PausingTracker(IdleSource())
        tracker.start(on_position=manager.position_listener(tracker))
        tracker.record(CoordinateSample(0.0, 0.0, T0))
        s = manager.current_session()
        assert s.status is RideStatus.PAUSED
        assert s.route_points == ()

    def test_update_gps_location_active_only(self, manager):
        manager.start_ride("BIKE-1")
        manager.pause_ride()
        manager.update_gps_location(28.6, 77.2, 0.1, active_only=True)
        assert manager.current_session().route_points == ()
        manager.update_gps_location(28.6, 77.2, 0.1)
        assert len(manager.current_session().route_points) == 1

    def test_listener_skips_paused_ride(self, manager):
        manager.start_ride("BIKE-1")
        manager.pause_ride()
        tracker = TrajectoryAccumulator(IdleSource())
        tracker.start(on_position=manager.position_listener(tracker))
        tracker.record(CoordinateSample(0.0, 0.0, T0))
        assert manager.current_session().route_points == ()

    def test_live_update(self, manager, clock):
        manager.start_ride("BIKE-1")
        tracker = TrajectoryAccumulator(IdleSource())
        tracker.record(CoordinateSample(0.0, 0.0, T0))
        tracker.record(CoordinateSample(ONE_KM_DEG, 0.0, T0 + timedelta(seconds=120)))
        clock.advance(120)
        s = manager.live_update(tracker)
        assert s.duration_s == 120
        assert s.total_fare == 20.0
        assert s.distance_km == pytest.approx(1.0)
        assert s.average_speed_kmh == pytest.approx(30.0)
        assert s.calories_burned == 20
        assert s.co2_saved_kg == 1.6
        assert s.air_filtered_l == 4.6

    def test_live_update_without_route_keeps_distance(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(60)
        s = manager.live_update(TrajectoryAccumulator(IdleSource()))
        assert s.duration_s == 60
        assert s.distance_km == 0.0

    def test_live_update_only_when_active(self, manager, clock):
        tracker = TrajectoryAccumulator(IdleSource())
        assert manager.live_update(tracker) is None
        manager.start_ride("BIKE-1")
        paused = manager.pause_ride()
        clock.advance(60)
        assert manager.live_update(tracker) is None
        assert manager.current_session() is paused


class TestRestore:
    """State is reloaded from the store on construction."""

    def test_restores_open_ride_and_history(self, clock, store):
        first = RideSessionManager(clock=clock, store=store)
        first.start_ride("BIKE-1")
        clock.advance(60)
        done = first.end_ride()
        open_ride = first.start_ride("BIKE-2")
        first.pause_ride()

        second = RideSessionManager(clock=clock, store=store)
        assert second.current_session().id == open_ride.id
        assert second.current_session().status is RideStatus.PAUSED
        assert second.session_history() == (done,)

    def test_drops_completed_current(self, clock):
        manager = RideSessionManager(clock=clock)
        manager.start_ride("BIKE-1")
        done = manager.end_ride()
        store = MemoryStore()
        store.save(StoredState(current=done, history=()))
        assert RideSessionManager(clock=clock, store=store).current_session() is None

    def test_stats(self, manager, clock):
        manager.start_ride("BIKE-1")
        clock.advance(30)
        manager.end_ride()
        manager.start_ride("BIKE-2")
        clock.advance(90)
        manager.end_ride()
        stats = manager.ride_stats()
        assert stats.total_rides == 2
        assert stats.total_duration_s == 120
        assert stats.total_spent == 15.0 + 20.0
        assert stats.average_ride_time_s == 60.0
