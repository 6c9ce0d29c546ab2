from __future__ import annotations

import argparse
import csv
import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path


@dataclass(frozen=True, slots=True)
class Site:
    name: str
    lat: float
    lon: float


FIELDNAMES = ["geoTime", "latitude", "longitude", "horizontalAccuracy"]


def generate_points(*, rows: int, seed: int, start: datetime, sites: list[Site]) -> list[dict[str, str]]:
    """Generate a fake field-visit track: dwell at a site, then travel to the next one."""

    rng = random.Random(seed)
    cur = start
    site = rng.choice(sites)
    out: list[dict[str, str]] = []
    for _ in range(rows):
        # Occasionally move on to another customer site
        if rng.random() < 0.05:
            site = rng.choice(sites)
        lat = site.lat + rng.uniform(-0.0008, 0.0008)
        lon = site.lon + rng.uniform(-0.0008, 0.0008)
        cur = cur + timedelta(seconds=rng.uniform(20, 40))
        hacc = rng.choice([5.0, 8.0, 12.0, 20.0, 35.0, -1.0])
        out.append(
            {
                "geoTime": str(int(cur.timestamp() * 1000)),
                "latitude": f"{lat:.7f}",
                "longitude": f"{lon:.7f}",
                "horizontalAccuracy": f"{hacc:.1f}",
            }
        )
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake track CSV for --source replay (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/Path.csv", help="Output CSV path")
    p.add_argument("--rows", type=int, default=200, help="Number of rows")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument("--start", type=str, default="2025-01-01T09:00:00+05:30", help="Start time (ISO-8601)")
    args = p.parse_args()

    start = datetime.fromisoformat(args.start)
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    sites = [
        Site("office_sector_62", 28.6270, 77.3727),
        Site("client_connaught_place", 28.6315, 77.2167),
        Site("warehouse_okhla", 28.5355, 77.2910),
        Site("client_gurugram", 28.4595, 77.0266),
    ]

    rows = generate_points(rows=args.rows, seed=args.seed, start=start, sites=sites)
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=FIELDNAMES)
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
