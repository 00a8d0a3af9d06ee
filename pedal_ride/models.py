"""Data models for coordinate samples, trajectory points and ride sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Final

from pedal_ride.timeutils import parse_iso, to_iso


class RideStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class Location:
    """A named place (start or end of a ride)."""

    latitude: float
    longitude: float
    address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, "address": self.address}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Location:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            address=str(data.get("address", "") or ""),
        )


@dataclass(frozen=True, slots=True)
class CoordinateSample:
    """A single position fix.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        captured_at: Timezone-aware capture time.
        accuracy_m: Horizontal accuracy in meters, if the source reports it.
        speed_kmh: Instantaneous speed in km/h, if the source reports it.
        heading_deg: Heading in degrees (0 = north), if the source reports it.
    """

    latitude: float
    longitude: float
    captured_at: datetime
    accuracy_m: float | None = None
    speed_kmh: float | None = None
    heading_deg: float | None = None


@dataclass(frozen=True, slots=True)
class TrajectoryPoint:
    """A recorded position plus cumulative distance from the start of the ride."""

    latitude: float
    longitude: float
    captured_at: datetime
    distance_km: float
    accuracy_m: float | None = None
    speed_kmh: float | None = None
    heading_deg: float | None = None

    @classmethod
    def from_sample(cls, sample: CoordinateSample, distance_km: float) -> TrajectoryPoint:
        return cls(
            latitude=sample.latitude,
            longitude=sample.longitude,
            captured_at=sample.captured_at,
            distance_km=distance_km,
            accuracy_m=sample.accuracy_m,
            speed_kmh=sample.speed_kmh,
            heading_deg=sample.heading_deg,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": to_iso(self.captured_at),
            "distance_km": self.distance_km,
            "accuracy_m": self.accuracy_m,
            "speed_kmh": self.speed_kmh,
            "heading_deg": self.heading_deg,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrajectoryPoint:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            captured_at=parse_iso(data["timestamp"]),
            distance_km=float(data["distance_km"]),
            accuracy_m=_opt_float(data.get("accuracy_m")),
            speed_kmh=_opt_float(data.get("speed_kmh")),
            heading_deg=_opt_float(data.get("heading_deg")),
        )


@dataclass(frozen=True, slots=True)
class RideSession:
    """One rental period from unlock to lock.

    Instances are immutable snapshots; the session manager replaces the
    current snapshot on every transition.
    """

    id: str
    bike_id: str
    start_time: datetime
    start_location: Location
    base_fare: float
    per_minute_fare: float
    total_fare: float
    status: RideStatus = RideStatus.ACTIVE
    duration_s: int = 0
    distance_km: float = 0.0
    end_time: datetime | None = None
    end_location: Location | None = None
    calories_burned: int = 0
    co2_saved_kg: float = 0.0
    air_filtered_l: float = 0.0
    route_points: tuple[TrajectoryPoint, ...] = ()
    average_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0

    @property
    def is_open(self) -> bool:
        """True while the session occupies the current-session slot."""

        return self.status is not RideStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bike_id": self.bike_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time) if self.end_time is not None else None,
            "duration_s": self.duration_s,
            "distance_km": self.distance_km,
            "base_fare": self.base_fare,
            "per_minute_fare": self.per_minute_fare,
            "total_fare": self.total_fare,
            "status": self.status.value,
            "start_location": self.start_location.to_dict(),
            "end_location": self.end_location.to_dict() if self.end_location is not None else None,
            "calories_burned": self.calories_burned,
            "co2_saved_kg": self.co2_saved_kg,
            "air_filtered_l": self.air_filtered_l,
            "route_points": [p.to_dict() for p in self.route_points],
            "average_speed_kmh": self.average_speed_kmh,
            "max_speed_kmh": self.max_speed_kmh,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RideSession:
        end_time = data.get("end_time")
        end_location = data.get("end_location")
        return cls(
            id=str(data["id"]),
            bike_id=str(data["bike_id"]),
            start_time=parse_iso(data["start_time"]),
            end_time=parse_iso(end_time) if end_time else None,
            duration_s=int(data.get("duration_s", 0)),
            distance_km=float(data.get("distance_km", 0.0)),
            base_fare=float(data["base_fare"]),
            per_minute_fare=float(data["per_minute_fare"]),
            total_fare=float(data["total_fare"]),
            status=RideStatus(data["status"]),
            start_location=Location.from_dict(data["start_location"]),
            end_location=Location.from_dict(end_location) if end_location else None,
            calories_burned=int(data.get("calories_burned", 0)),
            co2_saved_kg=float(data.get("co2_saved_kg", 0.0)),
            air_filtered_l=float(data.get("air_filtered_l", 0.0)),
            route_points=tuple(TrajectoryPoint.from_dict(p) for p in data.get("route_points") or ()),
            average_speed_kmh=float(data.get("average_speed_kmh", 0.0)),
            max_speed_kmh=float(data.get("max_speed_kmh", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class RidePatch:
    """Fields a periodic update may change on the current session.

    Anything left as None is kept. Identity, status, fares and timestamps are
    deliberately absent: they only change through lifecycle transitions.
    """

    duration_s: int | None = None
    distance_km: float | None = None
    average_speed_kmh: float | None = None
    calories_burned: int | None = None
    co2_saved_kg: float | None = None
    air_filtered_l: float | None = None
    route_points: tuple[TrajectoryPoint, ...] = field(default=())


@dataclass(frozen=True, slots=True)
class RideStats:
    """Aggregate statistics over completed rides."""

    total_rides: int = 0
    total_distance_km: float = 0.0
    total_duration_s: int = 0
    total_calories: int = 0
    total_co2_saved_kg: float = 0.0
    total_air_filtered_l: float = 0.0
    total_spent: float = 0.0
    average_ride_time_s: float = 0.0
    average_distance_km: float = 0.0


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


DEFAULT_TZ: Final[str] = "Asia/Kolkata"

DEFAULT_START_LOCATION: Final[Location] = Location(28.6139, 77.209, "Connaught Place, New Delhi")
DEFAULT_END_LOCATION: Final[Location] = Location(28.6129, 77.2095, "Near Connaught Place, New Delhi")
