"""Tracking controller: the repeating sample -> name -> store -> sync loop.

Per tick the steps run strictly in order: acquire a fix, resolve a display
name, save locally, push to the server. Only a failed local save is a hard
failure; a missing fix ends the tick early, and geocoding or sync errors are
recorded on the outcome. None of them stop the schedule.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from location_tracker.api import SyncClient
from location_tracker.auth import AuthProvider
from location_tracker.errors import PermissionDenied, PositionError, StorageError
from location_tracker.geocode import GeocodeResolver
from location_tracker.history import LocalHistoryStore
from location_tracker.models import (
    DEFAULT_INTERVAL_MS,
    UNKNOWN_LOCATION,
    HistoryEntry,
    LocationSample,
    TickOutcome,
    TickStatus,
    TrackingStatus,
)
from location_tracker.position import PositionProvider
from location_tracker.scheduler import Scheduler, ThreadingScheduler, TimerHandle
from location_tracker.timeutils import to_iso, utc_now

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


@dataclass(slots=True)
class TrackingSession:
    """One start..stop span. Owns the pending timer."""

    interval_ms: int
    active: bool = True
    handle: TimerHandle | None = None

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    def cancel(self) -> None:
        self.active = False
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


@dataclass(slots=True)
class _Counters:
    ticks: int = 0
    stored: int = 0
    fix_failures: int = 0
    geocode_failures: int = 0
    sync_failures: int = 0
    storage_failures: int = 0
    skipped: int = 0


class TrackingController:
    """Owns the tracking state (Idle/Active) and runs the per-tick pipeline.

    Collaborators are injected so tests can substitute fakes and a manual clock.
    At most one schedule exists per controller; ticks never overlap (a firing that
    finds the previous tick still running is skipped).
    """

    def __init__(
        self,
        positions: PositionProvider,
        geocoder: GeocodeResolver,
        store: LocalHistoryStore,
        sync: SyncClient,
        auth: AuthProvider,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
        on_outcome: Callable[[TickOutcome], None] | None = None,
    ) -> None:
        self._positions = positions
        self._geocoder = geocoder
        self._store = store
        self._sync = sync
        self._auth = auth
        self._scheduler = scheduler or ThreadingScheduler()
        self._clock = clock
        self._on_outcome = on_outcome

        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._session: TrackingSession | None = None
        self._counters = _Counters()
        self._last_outcome: TickOutcome | None = None

    def start(self, interval_ms: int = DEFAULT_INTERVAL_MS) -> TickOutcome | None:
        """Start tracking: run one tick now, then every ``interval_ms``.

        Returns:
            The outcome of the immediate tick, or None if tracking was already active.

        Raises:
            PermissionDenied: If the position provider refuses access.
            ValueError: If ``interval_ms`` is not positive.
        """

        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        with self._state_lock:
            if self._session is not None:
                logger.debug("start() ignored: tracking already active")
                return None
            if not self._permission_granted():
                raise PermissionDenied("Location permission denied")
            session = TrackingSession(interval_ms=interval_ms)
            self._session = session
        logger.info("Location tracking started (interval=%d ms)", interval_ms)

        try:
            with self._tick_lock:
                outcome = self._run_tick()
        except Exception:
            with self._state_lock:
                if self._session is session:
                    self._session = None
                session.cancel()
            raise

        with self._state_lock:
            if session.active and self._session is session:
                session.handle = self._schedule(session)
        return outcome

    def stop(self) -> None:
        """Stop tracking. No tick fires after this returns; an in-flight tick may finish."""

        with self._state_lock:
            session = self._session
            self._session = None
            if session is None:
                return
            session.cancel()
        logger.info("Location tracking stopped")

    def is_active(self) -> bool:
        return self._session is not None

    def status(self) -> TrackingStatus:
        session = self._session
        with self._stats_lock:
            c = self._counters
            return TrackingStatus(
                active=session is not None,
                interval_ms=session.interval_ms if session is not None else None,
                ticks=c.ticks,
                stored=c.stored,
                fix_failures=c.fix_failures,
                geocode_failures=c.geocode_failures,
                sync_failures=c.sync_failures,
                storage_failures=c.storage_failures,
                skipped=c.skipped,
                last_outcome=self._last_outcome,
            )

    def locate(self) -> LocationSample:
        """Acquire one fix with its display name, without saving or syncing it.

        Raises:
            PositionError: If no fix can be acquired (permission, timeout, unavailable).
        """

        fix = self._positions.acquire()
        name, _ = self._resolve_name(fix)
        return fix.with_name(name)

    def _permission_granted(self) -> bool:
        try:
            return bool(self._positions.request_permission())
        except Exception as exc:
            logger.warning("Location permission error: %s", exc)
            return False

    def _schedule(self, session: TrackingSession) -> TimerHandle:
        return self._scheduler.call_later(session.interval_seconds, lambda: self._on_timer(session))

    def _on_timer(self, session: TrackingSession) -> None:
        with self._state_lock:
            if not session.active or self._session is not session:
                return
            # Re-arm first so a slow tick does not delay the next firing.
            session.handle = self._schedule(session)

        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous tick still running; skipping this one")
            now = to_iso(self._clock())
            self._record(TickOutcome(status=TickStatus.SKIPPED_BUSY, started_at=now, finished_at=now))
            return
        try:
            self._run_tick()
        except Exception:
            logger.exception("Location tracking error")
        finally:
            self._tick_lock.release()

    def _run_tick(self) -> TickOutcome:
        started_at = to_iso(self._clock())

        try:
            fix = self._positions.acquire()
        except PositionError as exc:
            logger.warning("Location tracking error: %s", _describe(exc))
            return self._finish(TickStatus.NO_FIX, started_at, fix_error=_describe(exc))

        name, geocode_error = self._resolve_name(fix)
        sample = fix.with_name(name)

        try:
            entry = self._store.save(sample)
        except StorageError as exc:
            logger.error("Could not save location locally: %s", exc)
            return self._finish(
                TickStatus.STORAGE_FAILED,
                started_at,
                geocode_error=geocode_error,
                storage_error=_describe(exc),
            )

        sync_error = self._push(sample)
        return self._finish(
            TickStatus.STORED,
            started_at,
            entry=entry,
            synced=sync_error is None,
            geocode_error=geocode_error,
            sync_error=sync_error,
        )

    def _resolve_name(self, fix: LocationSample) -> tuple[str | None, str | None]:
        try:
            name = self._geocoder.resolve(fix.latitude, fix.longitude)
        except Exception as exc:
            logger.warning("Reverse geocoding error: %s", _describe(exc))
            return None, _describe(exc)
        if name == UNKNOWN_LOCATION:
            logger.warning("No place name for %.5f,%.5f", fix.latitude, fix.longitude)
            return None, "GeocodeFailure: no place name resolved"
        return (name or None), None

    def _push(self, sample: LocationSample) -> str | None:
        # Credentials are read on every tick so a refreshed token applies without a restart.
        try:
            token = self._auth.get_token()
            employee_id = self._auth.get_current_user_id()
            self._sync.push(sample, token, employee_id)
        except Exception as exc:
            logger.warning("Failed to send location update: %s", _describe(exc))
            return _describe(exc)
        logger.debug("Location updated: %s", sample)
        return None

    def _finish(
        self,
        status: TickStatus,
        started_at: str,
        *,
        entry: HistoryEntry | None = None,
        synced: bool = False,
        fix_error: str | None = None,
        geocode_error: str | None = None,
        sync_error: str | None = None,
        storage_error: str | None = None,
    ) -> TickOutcome:
        outcome = TickOutcome(
            status=status,
            started_at=started_at,
            finished_at=to_iso(self._clock()),
            entry=entry,
            synced=synced,
            fix_error=fix_error,
            geocode_error=geocode_error,
            sync_error=sync_error,
            storage_error=storage_error,
        )
        self._record(outcome)
        return outcome

    def _record(self, outcome: TickOutcome) -> None:
        with self._stats_lock:
            c = self._counters
            if outcome.status is TickStatus.SKIPPED_BUSY:
                c.skipped += 1
            else:
                c.ticks += 1
            if outcome.status is TickStatus.STORED:
                c.stored += 1
            if outcome.fix_error is not None:
                c.fix_failures += 1
            if outcome.geocode_error is not None:
                c.geocode_failures += 1
            if outcome.sync_error is not None:
                c.sync_failures += 1
            if outcome.storage_error is not None:
                c.storage_failures += 1
            self._last_outcome = outcome

        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception:
                logger.exception("Tick outcome listener failed")
