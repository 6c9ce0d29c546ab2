from __future__ import annotations

import threading

import pytest

from location_tracker import geocode
from location_tracker.errors import (
    AuthMissing,
    GeocodeFailure,
    PermissionDenied,
    PositionTimeout,
    PositionUnavailable,
    ServerError,
    StorageError,
)
from location_tracker.geocode import NominatimConfig, NominatimReverseGeocoder
from location_tracker.models import TickStatus
from location_tracker.tracking import TrackingController

INTERVAL_MS = 30_000


def test_start_runs_one_tick_immediately(controller, store, sync):
    outcome = controller.start(INTERVAL_MS)

    assert controller.is_active()
    assert outcome is not None and outcome.status is TickStatus.STORED
    assert outcome.synced
    assert len(store.get_all()) == 1
    assert store.get_all()[0].location_name == "Connaught Place, New Delhi"
    assert len(sync.pushed) == 1


def test_ticks_repeat_every_interval(controller, store, scheduler):
    controller.start(INTERVAL_MS)
    scheduler.advance(3 * INTERVAL_MS / 1000)

    assert controller.status().ticks == 4
    assert len(store.get_all()) == 4


def test_start_twice_keeps_one_schedule(controller, store, scheduler, positions):
    assert controller.start(INTERVAL_MS) is not None
    assert controller.start(INTERVAL_MS) is None
    assert scheduler.pending == 1

    scheduler.advance(5 * INTERVAL_MS / 1000)

    assert positions.calls == 1 + 5
    assert len(store.get_all()) == 6


def test_start_while_active_ignores_permission_change(controller, positions):
    controller.start(INTERVAL_MS)
    positions.permission = False

    assert controller.start(INTERVAL_MS) is None
    assert controller.is_active()


def test_stop_prevents_further_ticks(controller, scheduler, positions):
    controller.start(INTERVAL_MS)
    controller.stop()
    calls = positions.calls

    scheduler.advance(10 * INTERVAL_MS / 1000)

    assert not controller.is_active()
    assert positions.calls == calls
    assert scheduler.pending == 0


def test_stop_is_idempotent(controller):
    controller.stop()
    controller.start(INTERVAL_MS)
    controller.stop()
    controller.stop()

    assert not controller.is_active()


def test_restart_after_stop(controller, scheduler, positions):
    controller.start(INTERVAL_MS)
    controller.stop()
    controller.start(INTERVAL_MS)
    scheduler.advance(INTERVAL_MS / 1000)

    assert positions.calls == 3
    assert scheduler.pending == 1


def test_permission_denied_on_start(controller, positions, store):
    positions.permission = False

    with pytest.raises(PermissionDenied):
        controller.start(INTERVAL_MS)

    assert not controller.is_active()
    assert store.get_all() == []


def test_invalid_interval(controller):
    with pytest.raises(ValueError):
        controller.start(0)
    assert not controller.is_active()


@pytest.mark.parametrize("error", [PositionTimeout("no fix"), PositionUnavailable("no signal")])
def test_fix_failure_skips_tick_but_keeps_tracking(controller, positions, store, scheduler, sync, error):
    controller.start(INTERVAL_MS)
    positions.failures.append(error)

    scheduler.advance(INTERVAL_MS / 1000)

    assert controller.is_active()
    assert len(store.get_all()) == 1
    assert len(sync.pushed) == 1
    last = controller.status().last_outcome
    assert last is not None and last.status is TickStatus.NO_FIX
    assert type(error).__name__ in (last.fix_error or "")

    scheduler.advance(INTERVAL_MS / 1000)
    assert len(store.get_all()) == 2


def test_first_tick_fix_failure_still_starts(controller, positions, scheduler, store):
    positions.failures.append(PositionTimeout("cold start"))

    outcome = controller.start(INTERVAL_MS)

    assert outcome is not None and outcome.status is TickStatus.NO_FIX
    assert controller.is_active()
    scheduler.advance(INTERVAL_MS / 1000)
    assert len(store.get_all()) == 1


@pytest.mark.parametrize(
    "error",
    [ServerError(500, "boom"), AuthMissing("Auth token not found"), ConnectionResetError("reset")],
)
def test_sync_failure_keeps_local_entry(controller, sync, store, error):
    sync.error = error

    outcome = controller.start(INTERVAL_MS)

    assert outcome is not None and outcome.status is TickStatus.STORED
    assert not outcome.synced
    assert outcome.sync_error is not None
    assert len(store.get_all()) == 1
    assert controller.is_active()
    assert controller.status().sync_failures == 1


def test_sync_happens_after_local_save(controller, sync, store):
    seen: list[int] = []
    original = sync.push

    def push(sample, token, employee_id):
        seen.append(len(store.get_all()))
        return original(sample, token, employee_id)

    sync.push = push
    controller.start(INTERVAL_MS)

    assert seen == [1]


def test_geocode_failure_stores_unnamed_sample(controller, geocoder, store):
    geocoder.error = RuntimeError("geocoder down")

    outcome = controller.start(INTERVAL_MS)

    assert outcome is not None and outcome.status is TickStatus.STORED
    assert outcome.geocode_error is not None
    assert store.get_all()[0].location_name is None


def test_unresolved_place_name_is_stored_as_none(positions, store, sync, auth, scheduler, clock, monkeypatch):
    def offline(lat, lon, cfg):
        raise GeocodeFailure("Nominatim network error: timed out")

    monkeypatch.setattr(geocode, "nominatim_reverse_raw", offline)
    resolver = NominatimReverseGeocoder(NominatimConfig(min_interval_seconds=0))
    controller = TrackingController(positions, resolver, store, sync, auth, scheduler=scheduler, clock=clock)

    outcome = controller.start(INTERVAL_MS)

    assert outcome is not None and outcome.status is TickStatus.STORED
    assert outcome.geocode_error is not None
    assert store.get_all()[0].location_name is None
    assert sync.pushed[0][0].location_name is None
    assert controller.status().geocode_failures == 1


def test_storage_failure_is_hard_and_skips_sync(controller, store, sync, scheduler, monkeypatch):
    def boom(sample):
        raise StorageError("disk full")

    monkeypatch.setattr(store, "save", boom)

    outcome = controller.start(INTERVAL_MS)

    assert outcome is not None and outcome.status is TickStatus.STORAGE_FAILED
    assert not outcome.ok
    assert sync.pushed == []
    assert controller.is_active()
    scheduler.advance(INTERVAL_MS / 1000)
    assert controller.status().storage_failures == 2


def test_credentials_are_read_each_tick(controller, auth, sync, scheduler):
    controller.start(INTERVAL_MS)
    auth.token = "tok-2"
    scheduler.advance(INTERVAL_MS / 1000)

    assert [token for _, token, _ in sync.pushed] == ["tok-1", "tok-2"]
    assert {emp for _, _, emp in sync.pushed} == {"E42"}


def test_unexpected_error_in_scheduled_tick_keeps_schedule(controller, positions, scheduler, store):
    controller.start(INTERVAL_MS)
    positions.failures.append(RuntimeError("driver crashed"))  # not a PositionError

    scheduler.advance(INTERVAL_MS / 1000)
    scheduler.advance(INTERVAL_MS / 1000)

    assert controller.is_active()
    assert len(store.get_all()) == 2


def test_unexpected_error_on_first_tick_leaves_idle(controller, positions, scheduler):
    positions.failures.append(RuntimeError("driver crashed"))

    with pytest.raises(RuntimeError):
        controller.start(INTERVAL_MS)

    assert not controller.is_active()
    assert scheduler.pending == 0


def test_busy_tick_is_skipped(positions, geocoder, store, sync, auth, scheduler, clock):
    controller = TrackingController(positions, geocoder, store, sync, auth, scheduler=scheduler, clock=clock)
    controller.start(INTERVAL_MS)

    # Simulate a tick still in flight when the timer fires.
    controller._tick_lock.acquire()
    try:
        scheduler.advance(INTERVAL_MS / 1000)
    finally:
        controller._tick_lock.release()

    status = controller.status()
    assert status.skipped == 1
    assert status.last_outcome is not None and status.last_outcome.status is TickStatus.SKIPPED_BUSY
    assert scheduler.pending == 1
    assert len(store.get_all()) == 1


def test_outcome_listener(positions, geocoder, store, sync, auth, scheduler, clock):
    seen = []
    controller = TrackingController(
        positions, geocoder, store, sync, auth, scheduler=scheduler, clock=clock, on_outcome=seen.append
    )
    controller.start(INTERVAL_MS)
    scheduler.advance(INTERVAL_MS / 1000)

    assert [o.status for o in seen] == [TickStatus.STORED, TickStatus.STORED]


def test_locate_does_not_persist(controller, store, sync):
    sample = controller.locate()

    assert sample.location_name == "Connaught Place, New Delhi"
    assert store.get_all() == []
    assert sync.pushed == []


def test_locate_raises_permission_denied(controller, positions):
    positions.permission = False

    with pytest.raises(PermissionDenied):
        controller.locate()


def test_status_when_idle(controller):
    status = controller.status()

    assert not status.active
    assert status.interval_ms is None
    assert status.ticks == 0


def test_threading_scheduler_fires_and_stops(positions, geocoder, store, sync, auth):
    fired = threading.Event()

    def on_outcome(outcome):
        if outcome.status is TickStatus.STORED and positions.calls >= 2:
            fired.set()

    controller = TrackingController(positions, geocoder, store, sync, auth, on_outcome=on_outcome)
    controller.start(20)
    try:
        assert fired.wait(5.0)
    finally:
        controller.stop()
    assert not controller.is_active()
