"""Static client settings and the wiring that builds the services from them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from location_tracker.api import ApiConfig, HttpSyncClient
from location_tracker.auth import AuthService
from location_tracker.csv_io import load_track_points
from location_tracker.geocode import NominatimConfig, NominatimReverseGeocoder
from location_tracker.history import LocalHistoryStore
from location_tracker.kvstore import JsonKeyValueStore
from location_tracker.models import DEFAULT_INTERVAL_MS, MAX_HISTORY_ITEMS
from location_tracker.position import (
    PositionProvider,
    ReplayPositionProvider,
    StaticPositionProvider,
    TermuxPositionProvider,
)
from location_tracker.scheduler import Scheduler
from location_tracker.tracking import TrackingController

logger = logging.getLogger(__name__)

POSITION_SOURCES = ("static", "replay", "termux")


@dataclass(frozen=True, slots=True)
class TrackerConfig:
    """Everything needed to assemble a tracking client.

    Attributes:
        data_dir: Directory for ``store.json`` (history + session) and ``geocode_cache.json``.
        tz_name: IANA timezone for the "today" statistic. None uses the system timezone.
        interval_ms: Default sampling interval.
        position_source: One of ``static``, ``replay``, ``termux``.
        replay_csv: Track CSV for the ``replay`` source.
        static_lat / static_lon: Coordinate for the ``static`` source.
        geocode: Whether to reverse-geocode fixes at all.
    """

    data_dir: Path = Path(".location_tracker")
    tz_name: str | None = None
    interval_ms: int = DEFAULT_INTERVAL_MS
    max_history_items: int = MAX_HISTORY_ITEMS
    position_source: str = "static"
    replay_csv: Path | None = None
    replay_loop: bool = False
    static_lat: float = 37.7749
    static_lon: float = -122.4194
    position_timeout_seconds: float = 10.0
    geocode: bool = True
    api: ApiConfig = field(default_factory=ApiConfig)
    nominatim: NominatimConfig = field(default_factory=NominatimConfig)

    @property
    def store_path(self) -> Path:
        return self.data_dir / "store.json"

    @property
    def geocode_cache_path(self) -> Path:
        return self.data_dir / "geocode_cache.json"


class _NoGeocoder:
    """Used when geocoding is disabled: every fix stays unnamed."""

    def resolve(self, latitude: float, longitude: float) -> str:
        return ""


@dataclass(slots=True)
class Services:
    """The assembled client."""

    config: TrackerConfig
    kv: JsonKeyValueStore
    history: LocalHistoryStore
    auth: AuthService
    sync: HttpSyncClient
    controller: TrackingController


def build_position_provider(config: TrackerConfig) -> PositionProvider:
    """Create the provider named by ``config.position_source``.

    Raises:
        ValueError: For an unknown source or a replay source without a CSV.
    """

    source = config.position_source
    if source == "static":
        return StaticPositionProvider(config.static_lat, config.static_lon)
    if source == "replay":
        if config.replay_csv is None:
            raise ValueError("position_source='replay' needs replay_csv")
        return ReplayPositionProvider(load_track_points(config.replay_csv), loop=config.replay_loop)
    if source == "termux":
        return TermuxPositionProvider(timeout_seconds=config.position_timeout_seconds)
    raise ValueError(f"Unknown position source {source!r}; expected one of {POSITION_SOURCES}")


def build_services(
    config: TrackerConfig,
    *,
    positions: PositionProvider | None = None,
    scheduler: Scheduler | None = None,
) -> Services:
    kv = JsonKeyValueStore(config.store_path)
    history = LocalHistoryStore(kv, max_items=config.max_history_items, tz_name=config.tz_name)
    auth = AuthService(kv, config.api)
    sync = HttpSyncClient(config.api)
    if config.geocode:
        geocoder = NominatimReverseGeocoder(config.nominatim, cache=JsonKeyValueStore(config.geocode_cache_path))
    else:
        geocoder = _NoGeocoder()
    controller = TrackingController(
        positions if positions is not None else build_position_provider(config),
        geocoder,
        history,
        sync,
        auth,
        scheduler=scheduler,
    )
    return Services(config=config, kv=kv, history=history, auth=auth, sync=sync, controller=controller)


class ServicesHolder:
    """Hands out one ``Services`` per process, rebuilt only while tracking is off.

    Long-lived front ends (the dashboard) keep one holder. A configuration change
    while a session is active keeps the running services, so one store and one
    tracking timer exist at a time.
    """

    def __init__(self, build: Callable[[TrackerConfig], Services] = build_services) -> None:
        self._build = build
        self._lock = threading.Lock()
        self._services: Services | None = None

    def get(self, config: TrackerConfig) -> tuple[Services, bool]:
        """Services for ``config``.

        Returns:
            ``(services, applied)``; ``applied`` is False when tracking is active under
            a different configuration and the running services were returned instead.
        """

        with self._lock:
            current = self._services
            if current is not None and current.config == config:
                return current, True
            if current is not None and current.controller.is_active():
                logger.info("Tracking is active; keeping the running configuration")
                return current, False
            self._services = self._build(config)
            return self._services, True
