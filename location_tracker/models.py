"""Data models for location samples, history entries and tracking outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Final

MAX_HISTORY_ITEMS: Final[int] = 1000
DEFAULT_INTERVAL_MS: Final[int] = 30_000
UNKNOWN_LOCATION: Final[str] = "Unknown Location"


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True, slots=True)
class LocationSample:
    """A single fix, optionally labelled with a display name.

    Attributes:
        latitude: Latitude in decimal degrees (-90..90).
        longitude: Longitude in decimal degrees (-180..180).
        accuracy: Horizontal accuracy in meters, None if the provider did not report one.
        timestamp: ISO-8601 capture time. Set once at acquisition.
        location_name: Best-effort reverse-geocoded label.
    """

    latitude: float
    longitude: float
    accuracy: float | None
    timestamp: str
    location_name: str | None = None

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude!r}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude!r}")

    def with_name(self, location_name: str | None) -> LocationSample:
        return replace(self, location_name=location_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp,
            "location_name": self.location_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocationSample:
        """Build a sample from a stored or remote record.

        Raises:
            KeyError: If latitude/longitude/timestamp are missing.
            ValueError: If values cannot be converted or are out of range.
        """

        name = data.get("location_name", data.get("locationName"))
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=_optional_float(data.get("accuracy")),
            timestamp=str(data["timestamp"]),
            location_name=str(name) if name else None,
        )


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """A persisted sample plus storage metadata."""

    id: str
    sample: LocationSample
    saved_at: str

    @property
    def latitude(self) -> float:
        return self.sample.latitude

    @property
    def longitude(self) -> float:
        return self.sample.longitude

    @property
    def accuracy(self) -> float | None:
        return self.sample.accuracy

    @property
    def timestamp(self) -> str:
        return self.sample.timestamp

    @property
    def location_name(self) -> str | None:
        return self.sample.location_name

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.sample.to_dict(), "saved_at": self.saved_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            id=str(data["id"]),
            sample=LocationSample.from_dict(data),
            saved_at=str(data.get("saved_at", data.get("savedAt", ""))),
        )


@dataclass(frozen=True, slots=True)
class HistoryStats:
    """Counters shown on the history card."""

    total: int = 0
    today: int = 0
    this_week: int = 0
    last_update: str | None = None


class TickStatus(str, Enum):
    """How a tick ended."""

    STORED = "stored"
    NO_FIX = "no_fix"
    STORAGE_FAILED = "storage_failed"
    SKIPPED_BUSY = "skipped_busy"


@dataclass(frozen=True, slots=True)
class TickOutcome:
    """Result of one pipeline tick.

    Only ``storage_failed`` is a hard failure; fix, geocode and sync errors are
    recorded here and otherwise absorbed.
    """

    status: TickStatus
    started_at: str
    finished_at: str
    entry: HistoryEntry | None = None
    synced: bool = False
    fix_error: str | None = None
    geocode_error: str | None = None
    sync_error: str | None = None
    storage_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is TickStatus.STORED


@dataclass(frozen=True, slots=True)
class TrackingStatus:
    """Snapshot of the tracking controller's state and counters."""

    active: bool
    interval_ms: int | None
    ticks: int = 0
    stored: int = 0
    fix_failures: int = 0
    geocode_failures: int = 0
    sync_failures: int = 0
    storage_failures: int = 0
    skipped: int = 0
    last_outcome: TickOutcome | None = None


@dataclass(frozen=True, slots=True)
class UserProfile:
    """The logged-in user as returned by the login endpoint."""

    employee_id: str | None
    full_name: str = ""
    email: str = ""
    usertype_name: str = ""
    mobile_phone: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        employee_id = data.get("employee_id")
        return cls(
            employee_id=str(employee_id) if employee_id not in (None, "") else None,
            full_name=str(data.get("full_name", "") or ""),
            email=str(data.get("email", "") or ""),
            usertype_name=str(data.get("usertype_name", "") or ""),
            mobile_phone=str(data.get("mobile_phone", "") or ""),
            raw=dict(data),
        )
