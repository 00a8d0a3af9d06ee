"""Position sources: where coordinate samples come from.

A source is driven by the caller's loop: ``poll(now)`` emits every sample that
is due by ``now`` to the callback registered with ``start``. Nothing here
spawns threads or sleeps.

Important:
    There is no real GPS hardware behind any of these. When the configured
    source cannot produce samples the ride keeps going on the synthetic
    generator, see :class:`FallbackPositionSource`.
"""

from __future__ import annotations

import csv
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Literal, Protocol

from pedal_ride.errors import PositionSourceUnavailable, ValidationError
from pedal_ride.geo import validate_coordinate
from pedal_ride.models import DEFAULT_START_LOCATION, CoordinateSample
from pedal_ride.route_io import load_samples
from pedal_ride.timeutils import Clock

logger = logging.getLogger(__name__)

SampleCallback = Callable[[CoordinateSample], None]


class PositionSource(Protocol):
    def start(self, on_sample: SampleCallback) -> None: ...

    def stop(self) -> None: ...

    def current_position(self) -> CoordinateSample | None: ...

    def poll(self, now: datetime | None = None) -> int: ...


@dataclass(frozen=True, slots=True)
class TrackingConfig:
    """Configuration for position tracking."""

    source: Literal["simulated", "replay"] = "simulated"
    replay_csv: str | None = None
    cadence_s: float = 5.0
    seed: int | None = None
    seed_latitude: float = DEFAULT_START_LOCATION.latitude
    seed_longitude: float = DEFAULT_START_LOCATION.longitude
    # Max per-step perturbation in degrees (0.0005 deg is roughly 55 m).
    jitter_deg: float = 0.0005
    min_speed_kmh: float = 10.0
    max_speed_kmh: float = 20.0

    def __post_init__(self) -> None:
        if self.cadence_s <= 0:
            raise ValidationError(f"cadence_s must be positive, got {self.cadence_s!r}")
        validate_coordinate(self.seed_latitude, self.seed_longitude)


class SimulatedPositionSource:
    """Synthetic samples wandering around a fixed seed location.

    Emits the seed position as soon as it is started, then one sample every
    ``cadence_s`` seconds of clock time.
    """

    def __init__(self, clock: Clock, config: TrackingConfig | None = None) -> None:
        self._clock = clock
        self._cfg = config or TrackingConfig()
        self._rng = random.Random(self._cfg.seed)
        self._on_sample: SampleCallback | None = None
        self._position: CoordinateSample | None = None
        self._next_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._on_sample is not None

    def start(self, on_sample: SampleCallback) -> None:
        if self._on_sample is not None:
            return
        self._on_sample = on_sample
        now = self._clock.now()
        lat, lon = self._cfg.seed_latitude, self._cfg.seed_longitude
        if self._position is not None:
            lat, lon = self._position.latitude, self._position.longitude
        self._next_at = now + timedelta(seconds=self._cfg.cadence_s)
        logger.info("simulated position source started at (%.6f, %.6f)", lat, lon)
        self._emit(
            CoordinateSample(
                latitude=lat,
                longitude=lon,
                captured_at=now,
                accuracy_m=10.0,
                speed_kmh=(self._cfg.min_speed_kmh + self._cfg.max_speed_kmh) / 2.0,
            )
        )

    def stop(self) -> None:
        self._on_sample = None
        self._next_at = None

    def current_position(self) -> CoordinateSample | None:
        return self._position

    def poll(self, now: datetime | None = None) -> int:
        if self._on_sample is None or self._next_at is None:
            return 0
        now = now or self._clock.now()
        emitted = 0
        while self._on_sample is not None and self._next_at is not None and self._next_at <= now:
            self._emit(self._step(self._next_at))
            self._next_at = self._next_at + timedelta(seconds=self._cfg.cadence_s)
            emitted += 1
        return emitted

    def _step(self, at: datetime) -> CoordinateSample:
        assert self._position is not None
        j = self._cfg.jitter_deg
        lat = min(90.0, max(-90.0, self._position.latitude + (self._rng.random() - 0.5) * 2.0 * j))
        lon = self._position.longitude + (self._rng.random() - 0.5) * 2.0 * j
        lon = (lon + 180.0) % 360.0 - 180.0
        return CoordinateSample(
            latitude=lat,
            longitude=lon,
            captured_at=at,
            accuracy_m=self._rng.uniform(5.0, 25.0),
            speed_kmh=self._rng.uniform(self._cfg.min_speed_kmh, self._cfg.max_speed_kmh),
        )

    def _emit(self, sample: CoordinateSample) -> None:
        self._position = sample
        cb = self._on_sample
        if cb is not None:
            cb(sample)


class ReplayPositionSource:
    """Replays a recorded route CSV against the clock.

    Sample times are re-based so that the first recorded sample happens when
    the source is started; the gaps between samples are kept.
    """

    def __init__(self, csv_path: str | Path, clock: Clock) -> None:
        self._path = Path(csv_path)
        self._clock = clock
        self._on_sample: SampleCallback | None = None
        self._pending: list[CoordinateSample] = []
        self._position: CoordinateSample | None = None

    def start(self, on_sample: SampleCallback) -> None:
        if self._on_sample is not None:
            return
        try:
            samples, _ = load_samples(self._path)
        except (OSError, KeyError, ValueError, csv.Error) as exc:
            raise PositionSourceUnavailable(f"cannot read route {self._path}: {exc}") from exc
        if not samples:
            raise PositionSourceUnavailable(f"route {self._path} has no usable samples")

        origin = samples[0].captured_at
        started = self._clock.now()
        self._pending = [
            CoordinateSample(
                latitude=s.latitude,
                longitude=s.longitude,
                captured_at=started + (s.captured_at - origin),
                accuracy_m=s.accuracy_m,
                speed_kmh=s.speed_kmh,
                heading_deg=s.heading_deg,
            )
            for s in samples
        ]
        self._pending.reverse()
        self._on_sample = on_sample
        logger.info("replaying %s samples from %s", len(samples), self._path)
        self.poll(started)

    def stop(self) -> None:
        self._on_sample = None

    def current_position(self) -> CoordinateSample | None:
        return self._position

    @property
    def exhausted(self) -> bool:
        return not self._pending

    def poll(self, now: datetime | None = None) -> int:
        if self._on_sample is None:
            return 0
        now = now or self._clock.now()
        emitted = 0
        while self._on_sample is not None and self._pending and self._pending[-1].captured_at <= now:
            sample = self._pending.pop()
            self._position = sample
            self._on_sample(sample)
            emitted += 1
        return emitted


class FallbackPositionSource:
    """Use ``primary`` when it works, otherwise degrade to ``fallback``."""

    def __init__(self, primary: PositionSource, fallback: PositionSource) -> None:
        self._primary = primary
        self._fallback = fallback
        self._active: PositionSource | None = None

    @property
    def using_fallback(self) -> bool:
        return self._active is self._fallback

    def start(self, on_sample: SampleCallback) -> None:
        if self._active is not None:
            return
        try:
            self._primary.start(on_sample)
            self._active = self._primary
        except PositionSourceUnavailable as exc:
            logger.warning("position source unavailable (%s); using synthetic samples", exc)
            self._fallback.start(on_sample)
            self._active = self._fallback

    def stop(self) -> None:
        if self._active is not None:
            self._active.stop()
        self._active = None

    def current_position(self) -> CoordinateSample | None:
        if self._active is not None:
            return self._active.current_position()
        return self._primary.current_position() or self._fallback.current_position()

    def poll(self, now: datetime | None = None) -> int:
        if self._active is None:
            return 0
        return self._active.poll(now)


def build_position_source(config: TrackingConfig, clock: Clock) -> PositionSource:
    """Pick the position source strategy named by ``config.source``."""

    simulated = SimulatedPositionSource(clock, config)
    if config.source == "simulated":
        return simulated
    if config.source == "replay":
        if not config.replay_csv:
            raise ValidationError("replay source needs replay_csv")
        return FallbackPositionSource(ReplayPositionSource(config.replay_csv, clock), simulated)
    raise ValidationError(f"unknown position source: {config.source!r}")
