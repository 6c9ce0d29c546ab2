from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Callable

import pytest

from location_tracker.errors import PermissionDenied, PositionError
from location_tracker.history import LocalHistoryStore
from location_tracker.kvstore import JsonKeyValueStore
from location_tracker.models import LocationSample
from location_tracker.timeutils import to_iso
from location_tracker.tracking import TrackingController


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class _Timer:
    due: float
    seq: int
    fn: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Timers fire only when the test advances time."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.now = 0.0
        self._clock = clock
        self._timers: list[_Timer] = []
        self._seq = 0

    def call_later(self, delay_seconds: float, fn: Callable[[], None]) -> _Timer:
        self._seq += 1
        timer = _Timer(due=self.now + delay_seconds, seq=self._seq, fn=fn)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def advance(self, seconds: float) -> None:
        end = self.now + seconds
        while True:
            live = [t for t in self._timers if not t.cancelled and t.due <= end]
            if not live:
                break
            timer = min(live, key=lambda t: (t.due, t.seq))
            self._timers.remove(timer)
            self._set_now(timer.due)
            timer.fn()
        self._set_now(end)
        self._timers = [t for t in self._timers if not t.cancelled]

    def _set_now(self, value: float) -> None:
        if self._clock is not None:
            self._clock.advance(value - self.now)
        self.now = value


class FakePositions:
    def __init__(self, clock: Callable[[], datetime]) -> None:
        self.clock = clock
        self.permission = True
        self.failures: list[PositionError] = []
        self.calls = 0
        self.lat = 28.6139
        self.lon = 77.2090

    def request_permission(self) -> bool:
        return self.permission

    def acquire(self) -> LocationSample:
        self.calls += 1
        if not self.permission:
            raise PermissionDenied("Location permission denied")
        if self.failures:
            raise self.failures.pop(0)
        return LocationSample(latitude=self.lat, longitude=self.lon, accuracy=12.0, timestamp=to_iso(self.clock()))


class FakeGeocoder:
    def __init__(self) -> None:
        self.name = "Connaught Place, New Delhi"
        self.error: Exception | None = None

    def resolve(self, latitude: float, longitude: float) -> str:
        if self.error is not None:
            raise self.error
        return self.name


@dataclass
class FakeSync:
    error: Exception | None = None
    pushed: list[tuple[LocationSample, str | None, str | None]] = field(default_factory=list)

    def push(self, sample: LocationSample, auth_token: str | None, employee_id: str | None) -> dict:
        self.pushed.append((sample, auth_token, employee_id))
        if self.error is not None:
            raise self.error
        return {"apiexec_status": "success"}


@dataclass
class FakeAuth:
    token: str | None = "tok-1"
    employee_id: str | None = "E42"

    def get_token(self) -> str | None:
        return self.token

    def get_current_user_id(self) -> str | None:
        return self.employee_id


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def kv(tmp_path) -> JsonKeyValueStore:
    return JsonKeyValueStore(tmp_path / "store.json")


@pytest.fixture
def store(kv, clock) -> LocalHistoryStore:
    return LocalHistoryStore(kv, tz_name="UTC", clock=clock)


@pytest.fixture
def scheduler(clock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def positions(clock) -> FakePositions:
    return FakePositions(clock)


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def sync() -> FakeSync:
    return FakeSync()


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def controller(positions, geocoder, store, sync, auth, scheduler, clock) -> TrackingController:
    return TrackingController(positions, geocoder, store, sync, auth, scheduler=scheduler, clock=clock)


def make_sample(ts: str, lat: float = 37.7749, lon: float = -122.4194, name: str | None = "SF") -> LocationSample:
    return LocationSample(latitude=lat, longitude=lon, accuracy=10.0, timestamp=ts, location_name=name)


@pytest.fixture
def sample_factory() -> Callable[..., LocationSample]:
    return make_sample
