"""CSV input/output: recorded tracks for replay, history export for spreadsheets."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from location_tracker.models import HistoryEntry

logger = logging.getLogger(__name__)

HISTORY_CSV_FIELDS: Sequence[str] = (
    "id",
    "timestamp",
    "latitude",
    "longitude",
    "accuracy",
    "location_name",
    "saved_at",
)


@dataclass(frozen=True, slots=True)
class TrackPoint:
    """One recorded point of a track export.

    Attributes:
        geo_time_ms: Unix epoch milliseconds of the original recording.
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        accuracy: Horizontal accuracy in meters, None when the export used -1 as sentinel.
    """

    geo_time_ms: int
    latitude: float
    longitude: float
    accuracy: float | None


def _parse_accuracy(value: str | None) -> float | None:
    acc = float((value or "-1").strip())
    return acc if acc >= 0 else None


def load_track_points(csv_path: str | Path) -> list[TrackPoint]:
    """Load a track export sorted by time.

    The file needs ``geoTime``, ``latitude`` and ``longitude`` columns;
    ``horizontalAccuracy`` is optional. Broken rows are skipped.

    Raises:
        KeyError: If a required column is missing.
    """

    p = Path(csv_path)
    points: list[TrackPoint] = []
    skipped = 0
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        missing = [c for c in ("geoTime", "latitude", "longitude") if c not in fieldnames]
        if missing:
            raise KeyError(f"Track CSV is missing columns {missing}. Found: {list(fieldnames)}")
        for row in reader:
            try:
                lat = float(row["latitude"].strip())
                lon = float(row["longitude"].strip())
                if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
                    raise ValueError("coordinates out of range")
                points.append(
                    TrackPoint(
                        geo_time_ms=int(row["geoTime"].strip()),
                        latitude=lat,
                        longitude=lon,
                        accuracy=_parse_accuracy(row.get("horizontalAccuracy")),
                    )
                )
            except (AttributeError, ValueError, TypeError):
                skipped += 1
                continue

    if skipped > 0:
        logger.warning("Skipped %s unparsable rows in %s", skipped, p)
    points.sort(key=lambda pt: pt.geo_time_ms)
    return points


def write_history_csv(entries: Iterable[HistoryEntry], out_path: str | Path) -> int:
    """Write history entries to CSV, one row per entry in the given order.

    Returns:
        Number of rows written.
    """

    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with out.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(HISTORY_CSV_FIELDS))
        writer.writeheader()
        for entry in entries:
            row = entry.to_dict()
            writer.writerow({k: "" if row.get(k) is None else row.get(k) for k in HISTORY_CSV_FIELDS})
            n += 1
    return n
