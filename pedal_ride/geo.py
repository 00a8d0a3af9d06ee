"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from typing import Protocol

from pedal_ride.errors import ValidationError

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.32


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in kilometers between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in kilometers.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: HasCoordinates, b: HasCoordinates) -> float:
    """Great-circle distance between two objects carrying latitude/longitude."""

    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def validate_coordinate(lat: float, lon: float) -> None:
    """Reject coordinates outside the valid lat/lon ranges.

    Raises:
        ValidationError: If latitude is not within [-90, 90], longitude is not
            within [-180, 180], or either value is NaN/infinite.
    """

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError(f"coordinates must be finite numbers, got ({lat!r}, {lon!r})")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"latitude out of range [-90, 90]: {lat!r}")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"longitude out of range [-180, 180]: {lon!r}")


def offset_point(lat: float, lon: float, north_km: float, east_km: float) -> tuple[float, float]:
    """Move a point by a small north/east offset.

    Flat-earth approximation, fine for the sub-kilometre steps of a bike ride.
    """

    d_lat = north_km / KM_PER_DEGREE_LAT
    d_lon = east_km / (KM_PER_DEGREE_LAT * max(math.cos(math.radians(lat)), 1e-6))
    return lat + d_lat, lon + d_lon
