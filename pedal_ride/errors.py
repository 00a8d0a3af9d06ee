"""Exceptions raised by the ride core."""

from __future__ import annotations


class RideError(Exception):
    """Base class for all ride core errors."""


class ConflictError(RideError):
    """A ride is already active or paused."""


class NotFoundError(RideError):
    """There is no current ride to act on."""


class ValidationError(RideError, ValueError):
    """Input outside the accepted range (coordinates, fares, durations)."""


class PositionSourceUnavailable(RideError):
    """The position source cannot produce samples."""
