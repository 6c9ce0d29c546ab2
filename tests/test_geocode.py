from __future__ import annotations

import json
import urllib.error
import urllib.request

import pytest

from location_tracker.geocode import NominatimConfig, NominatimReverseGeocoder, coord_key, format_place_name
from location_tracker.kvstore import JsonKeyValueStore
from location_tracker.models import UNKNOWN_LOCATION

NOMINATIM_REPLY = {
    "name": "Palika Bazaar",
    "display_name": "Palika Bazaar, Connaught Place, New Delhi, Delhi, India",
    "address": {
        "road": "Radial Road 1",
        "suburb": "Connaught Place",
        "city": "New Delhi",
        "state": "Delhi",
        "country": "India",
    },
}


class _Response:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> _Response:
        return self

    def __exit__(self, *exc) -> None:
        return None


@pytest.fixture
def nominatim(monkeypatch):
    state: dict = {"calls": 0, "reply": NOMINATIM_REPLY}

    def fake_urlopen(req, timeout):
        state["calls"] += 1
        state["url"] = req.full_url
        if isinstance(state["reply"], BaseException):
            raise state["reply"]
        return _Response(json.dumps(state["reply"]).encode())

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    return state


@pytest.fixture
def cfg() -> NominatimConfig:
    return NominatimConfig(min_interval_seconds=0.0)


def test_coord_key_rounds():
    assert coord_key(28.613912, 77.209021, 4) == "28.6139,77.2090"


def test_format_place_name_joins_parts():
    assert format_place_name(NOMINATIM_REPLY) == "Palika Bazaar, Radial Road 1, Connaught Place, New Delhi, Delhi"


def test_format_place_name_fallbacks():
    assert format_place_name({"display_name": "Somewhere"}) == "Somewhere"
    assert format_place_name({}) == UNKNOWN_LOCATION


def test_resolve_calls_nominatim(nominatim, cfg):
    name = NominatimReverseGeocoder(cfg).resolve(28.6139, 77.209)

    assert name.startswith("Palika Bazaar")
    assert "lat=28.61390000" in nominatim["url"]


def test_resolve_uses_cache(nominatim, cfg, tmp_path):
    cache = JsonKeyValueStore(tmp_path / "geocode_cache.json")
    geocoder = NominatimReverseGeocoder(cfg, cache=cache)

    first = geocoder.resolve(28.61391, 77.20901)
    second = geocoder.resolve(28.61392, 77.20902)  # same rounded key

    assert first == second
    assert nominatim["calls"] == 1
    assert cache.get_item("28.6139,77.2090") == first


@pytest.mark.parametrize(
    "reply",
    [urllib.error.URLError("offline"), TimeoutError("slow"), {"error": "Unable to geocode"}],
)
def test_resolve_failure_returns_sentinel(nominatim, cfg, tmp_path, reply):
    nominatim["reply"] = reply
    cache = JsonKeyValueStore(tmp_path / "geocode_cache.json")

    assert NominatimReverseGeocoder(cfg, cache=cache).resolve(1.0, 2.0) == UNKNOWN_LOCATION
    assert cache.keys() == []
