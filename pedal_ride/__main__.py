"""Module entry point: python -m pedal_ride ..."""

from __future__ import annotations

from pedal_ride.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
