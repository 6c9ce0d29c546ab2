"""Exception types raised by the tracking services."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all location_tracker errors."""


class PositionError(TrackerError):
    """A fix could not be acquired."""


class PermissionDenied(PositionError):
    """The device refused location access."""


class PositionTimeout(PositionError):
    """No fix arrived within the provider's timeout."""


class PositionUnavailable(PositionError):
    """The provider has no position to offer (no hardware, no signal, end of replay)."""


class GeocodeFailure(TrackerError):
    """Reverse geocoding failed."""


class StorageError(TrackerError):
    """Local persistence failed."""


class SyncError(TrackerError):
    """Pushing to or fetching from the remote API failed."""


class AuthMissing(SyncError):
    """No session token or employee id is available."""


class NetworkError(SyncError):
    """The request did not produce a usable response."""


class ServerError(SyncError):
    """The server answered with a non-2xx status or a failure discriminator."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"server error {status_code}: {message}" if message else f"server error {status_code}")


class LoginError(TrackerError):
    """Login was rejected or could not be performed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
