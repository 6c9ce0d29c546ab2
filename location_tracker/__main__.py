"""Module entry point: python -m location_tracker ..."""

from __future__ import annotations

from location_tracker.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
