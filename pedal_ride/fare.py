"""Fare and environmental/fitness impact formulas.

All impact metrics are derived solely from the elapsed ride duration. Fares
bill whole minutes, rounding any partial minute up.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from pedal_ride.errors import ValidationError

CALORIES_SECONDS_PER_KCAL = 6
CO2_KG_PER_MINUTE = 0.8
AIR_LITERS_PER_MINUTE = 2.3


@dataclass(frozen=True, slots=True)
class FarePolicy:
    """Base fare plus a per-minute rate, in the operator's currency unit."""

    base_fare: float = 10.0
    per_minute_fare: float = 5.0

    def __post_init__(self) -> None:
        if not (math.isfinite(self.base_fare) and self.base_fare >= 0):
            raise ValidationError(f"base_fare must be a non-negative number, got {self.base_fare!r}")
        if not (math.isfinite(self.per_minute_fare) and self.per_minute_fare >= 0):
            raise ValidationError(f"per_minute_fare must be a non-negative number, got {self.per_minute_fare!r}")


@dataclass(frozen=True, slots=True)
class ImpactMetrics:
    calories_burned: int
    co2_saved_kg: float
    air_filtered_l: float


def _check_duration(duration_s: float) -> None:
    if not math.isfinite(duration_s) or duration_s < 0:
        raise ValidationError(f"duration must be a non-negative number of seconds, got {duration_s!r}")


def round_half_up(value: float, digits: int) -> float:
    """Round the printed value half-up (1.15 -> 1.2), unlike :func:`round`."""

    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def billable_minutes(duration_s: float) -> int:
    _check_duration(duration_s)
    return math.ceil(duration_s / 60)


def compute_fare(policy: FarePolicy, duration_s: float) -> float:
    """Total fare for a ride of ``duration_s`` seconds.

    ``base_fare + ceil(duration_s / 60) * per_minute_fare``
    """

    return policy.base_fare + billable_minutes(duration_s) * policy.per_minute_fare


def calories_burned(duration_s: float) -> int:
    _check_duration(duration_s)
    return math.floor(duration_s / CALORIES_SECONDS_PER_KCAL)


def co2_saved_kg(duration_s: float) -> float:
    _check_duration(duration_s)
    return round_half_up((duration_s / 60) * CO2_KG_PER_MINUTE, 2)


def air_filtered_l(duration_s: float) -> float:
    _check_duration(duration_s)
    return round_half_up((duration_s / 60) * AIR_LITERS_PER_MINUTE, 1)


def impact_for(duration_s: float) -> ImpactMetrics:
    return ImpactMetrics(
        calories_burned=calories_burned(duration_s),
        co2_saved_kg=co2_saved_kg(duration_s),
        air_filtered_l=air_filtered_l(duration_s),
    )
