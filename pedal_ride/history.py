"""Append-only history of completed rides and aggregate statistics."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from pedal_ride.models import RideSession, RideStats

logger = logging.getLogger(__name__)


class SessionHistory:
    """Completed rides, most recent first.

    Entries are immutable snapshots and are never changed once inserted. No
    de-duplication by id happens here; ending a ride only once is the session
    manager's job.
    """

    def __init__(self, entries: Iterable[RideSession] = ()) -> None:
        self._entries: list[RideSession] = list(entries)

    def append(self, session: RideSession) -> None:
        self._entries.insert(0, session)
        logger.debug("history now holds %s rides", len(self._entries))

    def entries(self) -> tuple[RideSession, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RideSession]:
        return iter(self.entries())

    def aggregate(self) -> RideStats:
        """Sum and average over every ride in the history.

        Plain accumulation: nothing is filtered or clamped.
        """

        count = 0
        distance = 0.0
        duration = 0
        calories = 0
        co2 = 0.0
        air = 0.0
        spent = 0.0
        for s in self._entries:
            count += 1
            distance += s.distance_km
            duration += s.duration_s
            calories += s.calories_burned
            co2 += s.co2_saved_kg
            air += s.air_filtered_l
            spent += s.total_fare

        return RideStats(
            total_rides=count,
            total_distance_km=distance,
            total_duration_s=duration,
            total_calories=calories,
            total_co2_saved_kg=co2,
            total_air_filtered_l=air,
            total_spent=spent,
            average_ride_time_s=duration / count if count else 0.0,
            average_distance_km=distance / count if count else 0.0,
        )
