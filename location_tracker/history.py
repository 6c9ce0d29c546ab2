"""Bounded local history of location samples.

The whole collection is stored newest-first under a single key of the
key/value store. ``save`` and ``clear`` raise ``StorageError``; read queries
log and degrade to empty results so screens never fail on a bad file.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable

from location_tracker.errors import StorageError
from location_tracker.geo import sample_distance_m
from location_tracker.kvstore import JsonKeyValueStore
from location_tracker.models import MAX_HISTORY_ITEMS, HistoryEntry, HistoryStats, LocationSample
from location_tracker.timeutils import (
    EPOCH,
    coerce_dt,
    epoch_ms_from_dt,
    local_midnight,
    parse_iso,
    to_iso,
    utc_now,
    week_ago,
)

logger = logging.getLogger(__name__)

LOCATION_HISTORY_KEY = "location_history"

# Remote samples closer than this (in time and space) to a local entry are the same fix.
MERGE_MAX_SECONDS = 1.0
MERGE_MAX_METERS = 25.0


class LocalHistoryStore:
    """Durable, bounded, newest-first log of samples."""

    def __init__(
        self,
        kv: JsonKeyValueStore,
        *,
        max_items: int = MAX_HISTORY_ITEMS,
        tz_name: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        self._kv = kv
        self._max_items = max_items
        self._tz_name = tz_name
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def max_items(self) -> int:
        return self._max_items

    def save(self, sample: LocationSample) -> HistoryEntry:
        """Persist a sample as the newest entry, evicting the oldest beyond the cap.

        Raises:
            StorageError: If the collection cannot be read or written.
        """

        with self._lock:
            records = self._read_records()
            saved_at = self._clock()
            entry = HistoryEntry(
                id=self._new_id(sample, saved_at, records),
                sample=sample,
                saved_at=to_iso(saved_at),
            )
            updated = [entry.to_dict(), *records][: self._max_items]
            self._kv.set_item(LOCATION_HISTORY_KEY, updated)
        logger.debug("Saved location %s to local history (%d entries)", entry.id, len(updated))
        return entry

    def get_all(self) -> list[HistoryEntry]:
        """All entries, newest first."""

        try:
            with self._lock:
                records = self._read_records()
        except StorageError as exc:
            logger.warning("Error getting location history: %s", exc)
            return []
        return list(_decode(records))

    def get_by_date_range(
        self,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
    ) -> list[HistoryEntry]:
        """Entries whose capture ``timestamp`` lies in ``[start, end]``.

        Args:
            start: Inclusive lower bound. None means the epoch.
            end: Inclusive upper bound. None means now.

        Returns:
            Matching entries, newest first. With both bounds None, every entry.
        """

        entries = self.get_all()
        if start is None and end is None:
            return entries
        try:
            lo = coerce_dt(start) if start is not None else EPOCH
            hi = coerce_dt(end) if end is not None else self._clock()
        except ValueError as exc:
            logger.warning("Error filtering location history: %s", exc)
            return []

        out: list[HistoryEntry] = []
        for entry in entries:
            captured = _captured_at(entry)
            if captured is not None and lo <= captured <= hi:
                out.append(entry)
        return out

    def clear(self) -> None:
        """Delete every entry. Irreversible.

        Raises:
            StorageError: If the store cannot be written.
        """

        with self._lock:
            self._kv.remove_item(LOCATION_HISTORY_KEY)
        logger.info("Location history cleared")

    def get_stats(self) -> HistoryStats:
        entries = self.get_all()
        if not entries:
            return HistoryStats()
        now = self._clock()
        start_of_day = local_midnight(now, self._tz_name)
        since = week_ago(now)
        today = 0
        this_week = 0
        for entry in entries:
            captured = _captured_at(entry)
            if captured is None:
                continue
            if captured >= start_of_day:
                today += 1
            if captured >= since:
                this_week += 1
        return HistoryStats(
            total=len(entries),
            today=today,
            this_week=this_week,
            last_update=entries[0].timestamp,
        )

    def export(self) -> str:
        """The full collection as pretty-printed JSON."""

        return json.dumps([e.to_dict() for e in self.get_all()], ensure_ascii=False, indent=2)

    def merge_remote(self, remote: Iterable[LocationSample]) -> list[HistoryEntry]:
        """Combine local history with samples fetched from the server.

        Local entries always win. A remote sample is dropped when a local entry was
        captured within ``MERGE_MAX_SECONDS`` and ``MERGE_MAX_METERS`` of it; the rest
        are added as read-only ``remote-`` entries. Nothing is written to disk.

        Returns:
            Combined entries ordered by capture time, newest first.
        """

        local = self.get_all()
        merged = list(local)
        for i, sample in enumerate(remote):
            try:
                captured = parse_iso(sample.timestamp)
            except ValueError:
                logger.warning("Skipping remote sample with bad timestamp %r", sample.timestamp)
                continue
            if any(_same_fix(entry, sample, captured) for entry in local):
                continue
            merged.append(
                HistoryEntry(id=f"remote-{epoch_ms_from_dt(captured)}-{i}", sample=sample, saved_at="")
            )
        merged.sort(key=lambda e: _captured_at(e) or EPOCH, reverse=True)
        return merged

    def _read_records(self) -> list[dict[str, Any]]:
        raw = self._kv.get_item(LOCATION_HISTORY_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Location history is not a list (%s); treating as empty", type(raw).__name__)
            return []
        return [r for r in raw if isinstance(r, dict)]

    def _new_id(self, sample: LocationSample, saved_at: datetime, records: list[dict[str, Any]]) -> str:
        try:
            ms = epoch_ms_from_dt(parse_iso(sample.timestamp))
        except ValueError:
            ms = epoch_ms_from_dt(saved_at)
        taken = {str(r.get("id")) for r in records}
        n = 0
        while f"{ms}-{n}" in taken:
            n += 1
        return f"{ms}-{n}"


def _decode(records: Iterable[dict[str, Any]]) -> Iterable[HistoryEntry]:
    for record in records:
        try:
            yield HistoryEntry.from_dict(record)
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Skipping malformed history entry %r: %s", record.get("id"), exc)


def _captured_at(entry: HistoryEntry) -> datetime | None:
    try:
        return parse_iso(entry.timestamp)
    except ValueError:
        return None


def _same_fix(entry: HistoryEntry, sample: LocationSample, captured: datetime) -> bool:
    local_at = _captured_at(entry)
    if local_at is None:
        return False
    if abs((local_at - captured).total_seconds()) > MERGE_MAX_SECONDS:
        return False
    return sample_distance_m(entry.sample, sample) <= MERGE_MAX_METERS
