"""Reverse geocoding (lat/lon -> display name).

Important:
    - Public reverse-geocoding services are rate-limited.
    - For Nominatim (OpenStreetMap), please respect their usage policy and set a reasonable
      request interval and a descriptive User-Agent.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol

from location_tracker.errors import GeocodeFailure, StorageError
from location_tracker.kvstore import JsonKeyValueStore
from location_tracker.models import UNKNOWN_LOCATION

logger = logging.getLogger(__name__)


class GeocodeResolver(Protocol):
    def resolve(self, latitude: float, longitude: float) -> str: ...


def coord_key(lat: float, lon: float, precision: int) -> str:
    """Build a stable cache key by rounding coordinates.

    Precision=4 is often a good default (lat ~ 11m resolution).
    """

    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"


def format_place_name(raw: dict[str, Any]) -> str:
    """Join the interesting address parts of a Nominatim response.

    Order: name, road, suburb/district, city, state. Falls back to ``display_name``
    and finally to ``UNKNOWN_LOCATION``.
    """

    address = raw.get("address") or {}
    if not isinstance(address, dict):
        address = {}
    candidates = [
        raw.get("name"),
        address.get("road"),
        address.get("suburb") or address.get("city_district") or address.get("neighbourhood"),
        address.get("city") or address.get("town") or address.get("village"),
        address.get("state"),
    ]
    parts: list[str] = []
    for part in candidates:
        text = str(part or "").strip()
        if text and text not in parts:
            parts.append(text)
    if parts:
        return ", ".join(parts)
    return str(raw.get("display_name", "") or "").strip() or UNKNOWN_LOCATION


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Configuration for Nominatim reverse API."""

    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    accept_language: str = "en"
    zoom: int = 18
    addressdetails: int = 1
    timeout_seconds: float = 10.0
    min_interval_seconds: float = 1.0
    cache_precision: int = 4
    user_agent: str = "location-tracker/0.1.0 (reverse-geocode; please set your own UA)"


def nominatim_reverse_raw(lat: float, lon: float, cfg: NominatimConfig) -> dict[str, Any]:
    """Call Nominatim reverse API and return the raw JSON dict.

    Raises:
        GeocodeFailure: On transport errors, non-JSON bodies or an ``error`` response.
    """

    params = {
        "format": "jsonv2",
        "lat": f"{lat:.8f}",
        "lon": f"{lon:.8f}",
        "zoom": str(cfg.zoom),
        "addressdetails": str(cfg.addressdetails),
        "accept-language": cfg.accept_language,
    }
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": cfg.user_agent,
            "Accept": "application/json",
        },
        method="GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=cfg.timeout_seconds) as resp:  # noqa: S310
            body = resp.read().decode("utf-8", errors="replace")
        raw = json.loads(body)
    except (urllib.error.URLError, OSError, json.JSONDecodeError) as exc:
        raise GeocodeFailure(f"reverse geocoding failed for {lat:.5f},{lon:.5f}: {exc}") from exc
    if not isinstance(raw, dict) or "error" in raw:
        raise GeocodeFailure(f"reverse geocoding returned no result for {lat:.5f},{lon:.5f}")
    return raw


class NominatimReverseGeocoder:
    """Reverse geocoder using OpenStreetMap Nominatim, with an optional disk cache.

    ``resolve`` never raises: failures are logged and answered with
    ``UNKNOWN_LOCATION``. Failed lookups are not cached.
    """

    def __init__(self, config: NominatimConfig | None = None, cache: JsonKeyValueStore | None = None) -> None:
        self._cfg = config or NominatimConfig()
        self._cache = cache
        self._last_request_at = 0.0
        self._throttle_lock = threading.Lock()

    def resolve(self, latitude: float, longitude: float) -> str:
        key = coord_key(latitude, longitude, self._cfg.cache_precision)
        cached = self._cache_get(key)
        if cached:
            return cached

        self._sleep_if_needed()
        try:
            raw = nominatim_reverse_raw(latitude, longitude, self._cfg)
        except GeocodeFailure as exc:
            logger.warning("Reverse geocoding error: %s", exc)
            return UNKNOWN_LOCATION

        place = format_place_name(raw)
        if place != UNKNOWN_LOCATION:
            self._cache_set(key, place)
        return place

    def _cache_get(self, key: str) -> str | None:
        if self._cache is None:
            return None
        try:
            value = self._cache.get_item(key)
        except StorageError as exc:
            logger.warning("Geocode cache unreadable: %s", exc)
            return None
        return str(value) if value else None

    def _cache_set(self, key: str, place: str) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set_item(key, place)
        except StorageError as exc:
            logger.warning("Geocode cache not updated: %s", exc)

    def _sleep_if_needed(self) -> None:
        with self._throttle_lock:
            now = time.time()
            wait = self._cfg.min_interval_seconds - (now - self._last_request_at)
            if wait > 0:
                time.sleep(wait)
            self._last_request_at = time.time()
