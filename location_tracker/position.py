"""Position providers: where a fix comes from.

Every provider re-checks permission on each ``acquire`` call; nothing about a
granted or denied permission is remembered between calls.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
from datetime import datetime
from typing import Callable, Protocol, Sequence

from location_tracker.csv_io import TrackPoint
from location_tracker.errors import PermissionDenied, PositionTimeout, PositionUnavailable
from location_tracker.models import LocationSample
from location_tracker.timeutils import to_iso, utc_now

logger = logging.getLogger(__name__)

PermissionCheck = Callable[[], bool]


class PositionProvider(Protocol):
    def request_permission(self) -> bool: ...

    def acquire(self) -> LocationSample: ...


def _always_granted() -> bool:
    return True


class StaticPositionProvider:
    """Reports a fixed coordinate. Used for demos and on machines without a GPS."""

    def __init__(
        self,
        latitude: float = 37.7749,
        longitude: float = -122.4194,
        accuracy: float | None = 10.0,
        *,
        permission: PermissionCheck = _always_granted,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        # Validates the coordinate once, up front.
        LocationSample(latitude=latitude, longitude=longitude, accuracy=accuracy, timestamp=to_iso(clock()))
        self._latitude = latitude
        self._longitude = longitude
        self._accuracy = accuracy
        self._permission = permission
        self._clock = clock

    def request_permission(self) -> bool:
        return bool(self._permission())

    def acquire(self) -> LocationSample:
        if not self.request_permission():
            raise PermissionDenied("Location permission denied")
        return LocationSample(
            latitude=self._latitude,
            longitude=self._longitude,
            accuracy=self._accuracy,
            timestamp=to_iso(self._clock()),
        )


class ReplayPositionProvider:
    """Plays back recorded track points, one per ``acquire``.

    The capture timestamp is the time of acquisition, not the recording time, so a
    replayed track looks like a live session.
    """

    def __init__(
        self,
        points: Sequence[TrackPoint],
        *,
        loop: bool = False,
        permission: PermissionCheck = _always_granted,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._points = list(points)
        self._loop = loop
        self._permission = permission
        self._clock = clock
        self._index = 0
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        return max(0, len(self._points) - self._index)

    def request_permission(self) -> bool:
        return bool(self._permission())

    def acquire(self) -> LocationSample:
        if not self.request_permission():
            raise PermissionDenied("Location permission denied")
        with self._lock:
            if self._index >= len(self._points):
                if not self._loop or not self._points:
                    raise PositionUnavailable("Replay track exhausted")
                self._index = 0
            pt = self._points[self._index]
            self._index += 1
        return LocationSample(
            latitude=pt.latitude,
            longitude=pt.longitude,
            accuracy=pt.accuracy,
            timestamp=to_iso(self._clock()),
        )


class TermuxPositionProvider:
    """Reads the device GPS on Android through the Termux:API ``termux-location`` command."""

    def __init__(
        self,
        *,
        provider: str = "gps",
        timeout_seconds: float = 10.0,
        executable: str = "termux-location",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._provider = provider
        self._timeout = timeout_seconds
        self._executable = executable
        self._clock = clock

    def request_permission(self) -> bool:
        """The command is the capability: without Termux:API there is no location access."""

        return shutil.which(self._executable) is not None

    def acquire(self) -> LocationSample:
        if not self.request_permission():
            raise PermissionDenied(f"{self._executable} not available; install Termux:API and grant location")
        try:
            result = subprocess.run(
                [self._executable, "-p", self._provider, "-r", "once"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise PositionTimeout(f"No fix within {self._timeout:.0f}s") from exc
        except OSError as exc:
            raise PositionUnavailable(f"Cannot run {self._executable}: {exc}") from exc

        output = (result.stdout or "").strip()
        if "permission" in output.lower() or "permission" in (result.stderr or "").lower():
            raise PermissionDenied("Location permission denied")
        if result.returncode != 0 or not output:
            raise PositionUnavailable(f"{self._executable} exited with {result.returncode}: {result.stderr.strip()}")
        try:
            data = json.loads(output)
            sample = LocationSample(
                latitude=float(data["latitude"]),
                longitude=float(data["longitude"]),
                accuracy=float(data["accuracy"]) if data.get("accuracy") is not None else None,
                timestamp=to_iso(self._clock()),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise PositionUnavailable(f"Unexpected {self._executable} output: {output[:200]!r}") from exc
        logger.debug("Fix %.6f,%.6f (+/-%sm)", sample.latitude, sample.longitude, sample.accuracy)
        return sample
