"""Shared fixtures for ride core tests."""

from datetime import UTC, datetime

import pytest

from pedal_ride.session import RideConfig, RideSessionManager
from pedal_ride.storage import MemoryStore
from pedal_ride.timeutils import ManualClock

T0 = datetime(2025, 1, 1, 8, 0, 0, tzinfo=UTC)


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def manager(clock, store):
    counter = iter(range(1, 1000))
    return RideSessionManager(
        RideConfig(),
        clock=clock,
        store=store,
        id_factory=lambda now: f"ride_{next(counter)}",
    )
