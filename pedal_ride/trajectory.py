"""Trajectory accumulation: cumulative distance and speed over a sample stream.

Usage:
    tracker = TrajectoryAccumulator(SimulatedPositionSource(clock))
    tracker.start(on_distance=lambda km: print(f"total: {km:.3f} km"))

    while riding:
        tracker.poll()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from pedal_ride.geo import distance_km
from pedal_ride.models import CoordinateSample, TrajectoryPoint
from pedal_ride.position import PositionSource

logger = logging.getLogger(__name__)


class TrajectoryAccumulator:
    """
    Track the route of the current ride from a position source.

    Every sample counts: there is no jitter threshold and no glitch filter, a
    stationary rider just adds zero-length steps.
    """

    def __init__(self, source: PositionSource) -> None:
        self._source = source
        self._tracking = False
        self._position: CoordinateSample | None = None
        self._points: list[TrajectoryPoint] = []
        self._on_position: Callable[[CoordinateSample], None] | None = None
        self._on_distance: Callable[[float], None] | None = None

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    def start(
        self,
        on_position: Callable[[CoordinateSample], None] | None = None,
        on_distance: Callable[[float], None] | None = None,
    ) -> None:
        """
        Begin consuming samples from the source.

        Calling this while already tracking does nothing (the existing
        callbacks stay registered).
        """
        if self._tracking:
            logger.debug("trajectory tracking already started")
            return

        self._on_position = on_position
        self._on_distance = on_distance
        try:
            self._source.start(self.record)
        except Exception:
            self._on_position = None
            self._on_distance = None
            raise
        self._tracking = True
        logger.info("trajectory tracking started")

    def stop(self) -> None:
        """Stop consuming samples. Accumulated route is kept."""
        if not self._tracking:
            return
        self._tracking = False
        self._source.stop()
        logger.info("trajectory tracking stopped at %.3f km", self.total_distance())

    def poll(self, now: datetime | None = None) -> int:
        """Let the source emit whatever is due. Returns the number of samples."""
        if not self._tracking:
            return 0
        return self._source.poll(now)

    def record(self, sample: CoordinateSample) -> float:
        """
        Ingest one sample.

        Args:
            sample: New position fix.

        Returns:
            Cumulative distance in km after this sample.
        """
        if self._position is None or not self._points:
            total = 0.0
            self._points.append(TrajectoryPoint.from_sample(sample, 0.0))
        else:
            step = distance_km(self._position, sample)
            total = self._points[-1].distance_km + step
            self._points.append(TrajectoryPoint.from_sample(sample, total))
            if self._on_distance is not None:
                self._on_distance(total)

        self._position = sample
        if self._on_position is not None:
            self._on_position(sample)
        return total

    def current_position(self) -> CoordinateSample | None:
        return self._position

    def route_points(self) -> list[TrajectoryPoint]:
        return list(self._points)

    def total_distance(self) -> float:
        """Cumulative distance in km (0 if nothing recorded)."""
        return self._points[-1].distance_km if self._points else 0.0

    def average_speed(self) -> float:
        """
        Average speed in km/h between the first and last recorded point.

        Returns 0 with fewer than two points or when no time has elapsed.
        """
        if len(self._points) < 2:
            return 0.0
        hours = (self._points[-1].captured_at - self._points[0].captured_at).total_seconds() / 3600.0
        if hours <= 0:
            return 0.0
        return self.total_distance() / hours

    def reset(self) -> None:
        """Forget the recorded route, e.g. before the next ride."""
        self.stop()
        self._position = None
        self._points.clear()

    def to_dict(self) -> dict:
        """Export tracker state as dictionary."""
        return {
            "tracking": self._tracking,
            "points": len(self._points),
            "total_km": self.total_distance(),
            "average_speed_kmh": self.average_speed(),
            "last_lat": self._position.latitude if self._position else None,
            "last_lon": self._position.longitude if self._position else None,
        }
