from __future__ import annotations

import streamlit as st

from pedal_ride.errors import RideError
from pedal_ride.fare import FarePolicy
from pedal_ride.models import DEFAULT_TZ, Location, RideSession, RideStatus
from pedal_ride.position import TrackingConfig, build_position_source
from pedal_ride.session import RideConfig, RideSessionManager
from pedal_ride.storage import JsonFileStore
from pedal_ride.timeutils import SystemClock, format_hhmmss, local_time
from pedal_ride.trajectory import TrajectoryAccumulator


def _ride_rows(history: tuple[RideSession, ...], tz_name: str) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for s in history:
        rows.append(
            {
                "ride": s.id,
                "bike": s.bike_id,
                "start_time": local_time(s.start_time, tz_name).isoformat(sep=" "),
                "duration": format_hhmmss(s.duration_s),
                "distance_km": round(s.distance_km, 2),
                "fare": s.total_fare,
                "calories": s.calories_burned,
                "co2_saved_kg": s.co2_saved_kg,
                "air_filtered_l": s.air_filtered_l,
            }
        )
    return rows


def _get_runtime(
    state_path: str, fare: FarePolicy, tz_name: str, seed: int | None
) -> tuple[RideSessionManager, TrajectoryAccumulator]:
    """One manager and one tracker per browser session, rebuilt when settings change."""

    key = (state_path, fare, tz_name, seed)
    if st.session_state.get("runtime_key") != key:
        old = st.session_state.get("tracker")
        if old is not None:
            old.stop()
        clock = SystemClock()
        manager = RideSessionManager(
            RideConfig(fare=fare, tz_name=tz_name),
            clock=clock,
            store=JsonFileStore(state_path),
        )
        tracker = TrajectoryAccumulator(build_position_source(TrackingConfig(seed=seed), clock))
        st.session_state["runtime_key"] = key
        st.session_state["manager"] = manager
        st.session_state["tracker"] = tracker
    return st.session_state["manager"], st.session_state["tracker"]


def _ensure_tracking(manager: RideSessionManager, tracker: TrajectoryAccumulator) -> None:
    session = manager.current_session()
    if session is not None and not tracker.is_tracking:
        tracker.start(on_position=manager.position_listener(tracker))


def main() -> None:
    st.set_page_config(page_title="Pedal ride", layout="wide")
    st.title("Pedal ride: ride session simulator")

    with st.sidebar:
        st.subheader("Data and timezone")
        tz_name = st.text_input("Timezone (IANA)", value=DEFAULT_TZ)
        state_path = st.text_input("State file", value="ride_state.json")

        st.subheader("Fare")
        base_fare = st.number_input("Base fare", value=10.0, min_value=0.0, step=1.0)
        per_minute_fare = st.number_input("Per started minute", value=5.0, min_value=0.0, step=0.5)

        with st.expander("Simulated GPS", expanded=False):
            seed_text = st.text_input("Random seed (empty = random)", value="")

    seed = int(seed_text) if seed_text.strip().lstrip("-").isdigit() else None
    try:
        manager, tracker = _get_runtime(
            state_path, FarePolicy(float(base_fare), float(per_minute_fare)), tz_name, seed
        )
    except (RideError, ValueError) as exc:
        st.error(str(exc))
        return
    _ensure_tracking(manager, tracker)

    session = manager.current_session()
    c1, c2 = st.columns(2)
    if session is None:
        bike_id = c1.text_input("Bike id (from the QR code)", value="PP-2024-A7")
        if c2.button("Unlock and start ride", type="primary", use_container_width=True):
            try:
                tracker.reset()
                manager.start_ride(bike_id)
                _ensure_tracking(manager, tracker)
            except RideError as exc:
                st.error(str(exc))
            st.rerun()
    else:
        if session.status is RideStatus.ACTIVE:
            if c1.button("Pause ride", use_container_width=True):
                manager.pause_ride()
                st.rerun()
        elif c1.button("Resume ride", use_container_width=True):
            manager.resume_ride()
            st.rerun()
        if c2.button("End ride and lock bike", type="primary", use_container_width=True):
            tracker.stop()
            pos = tracker.current_position()
            end = Location(pos.latitude, pos.longitude, "Current location") if pos is not None else None
            done = manager.end_ride(end)
            st.session_state["last_completed"] = done
            st.rerun()

    _live_panel(manager, tracker)

    last = st.session_state.get("last_completed")
    if last is not None and manager.current_session() is None:
        st.subheader("Ride summary")
        s1, s2, s3, s4 = st.columns(4)
        s1.metric("Duration", format_hhmmss(last.duration_s))
        s2.metric("Distance", f"{last.distance_km:.2f} km")
        s3.metric("Fare", f"{last.total_fare:g}")
        s4.metric("CO2 saved", f"{last.co2_saved_kg:.2f} kg")

    stats = manager.ride_stats()
    st.subheader("All rides")
    a1, a2, a3, a4 = st.columns(4)
    a1.metric("Rides", str(stats.total_rides))
    a2.metric("Distance", f"{stats.total_distance_km:.2f} km")
    a3.metric("Average ride", format_hhmmss(stats.average_ride_time_s))
    a4.metric("Spent", f"{stats.total_spent:g}")
    b1, b2, b3 = st.columns(3)
    b1.metric("Calories", str(stats.total_calories))
    b2.metric("CO2 saved", f"{stats.total_co2_saved_kg:.2f} kg")
    b3.metric("Air filtered", f"{stats.total_air_filtered_l:.1f} L")

    with st.expander("History (most recent first)", expanded=False):
        rows = _ride_rows(manager.session_history(), manager.config.tz_name)
        st.dataframe(rows, use_container_width=True, height=360)

    st.caption("Positions come from the simulated GPS source; fares bill every started minute.")


@st.fragment(run_every=1.0)
def _live_panel(manager: RideSessionManager, tracker: TrajectoryAccumulator) -> None:
    tracker.poll()
    manager.live_update(tracker)
    session = manager.current_session()
    if session is None:
        return

    st.subheader(f"Ride {session.bike_id} ({session.status.value})")
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Ride time", format_hhmmss(session.duration_s))
    m2.metric("Distance", f"{session.distance_km:.2f} km")
    m3.metric("Fare so far", f"{session.total_fare:g}")
    m4.metric("Max speed", f"{session.max_speed_kmh:.1f} km/h")
    n1, n2, n3 = st.columns(3)
    n1.metric("Calories", str(session.calories_burned))
    n2.metric("CO2 saved", f"{session.co2_saved_kg:.2f} kg")
    n3.metric("Air filtered", f"{session.air_filtered_l:.1f} L")
    if session.route_points:
        st.map([{"lat": p.latitude, "lon": p.longitude} for p in session.route_points], size=4)


if __name__ == "__main__":
    main()
