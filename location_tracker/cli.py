"""Command-line interface for location_tracker.

Run:
    python -m location_tracker login --username 9876543210
    python -m location_tracker track --interval-ms 30000
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from dataclasses import asdict, replace
from datetime import timedelta
from pathlib import Path
from time import sleep

from location_tracker.api import ApiConfig
from location_tracker.config import POSITION_SOURCES, Services, TrackerConfig, build_services
from location_tracker.csv_io import write_history_csv
from location_tracker.errors import PositionError, StorageError, SyncError
from location_tracker.models import DEFAULT_INTERVAL_MS, HistoryEntry
from location_tracker.timeutils import local_midnight, tzinfo_from_name, utc_now

logger = logging.getLogger(__name__)


def _config_from_args(args: argparse.Namespace) -> TrackerConfig:
    api = ApiConfig()
    if args.api_base_url:
        api = replace(api, base_url=args.api_base_url)
    if args.subdomain:
        api = replace(api, subdomain=args.subdomain)
    return TrackerConfig(
        data_dir=Path(args.data_dir),
        tz_name=args.tz,
        position_source=args.source,
        replay_csv=Path(args.replay_csv) if args.replay_csv else None,
        replay_loop=args.replay_loop,
        static_lat=args.lat,
        static_lon=args.lon,
        geocode=not args.no_geocode,
        api=api,
    )


def _services(args: argparse.Namespace) -> Services:
    return build_services(_config_from_args(args))


def _print_entry(entry: HistoryEntry) -> None:
    acc = "?" if entry.accuracy is None else f"{entry.accuracy:.0f}m"
    name = entry.location_name or "-"
    print(f"{entry.timestamp}  {entry.latitude:.6f},{entry.longitude:.6f}  +/-{acc:<6} {name}")


def _cmd_login(args: argparse.Namespace) -> int:
    svc = _services(args)
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    result = svc.auth.login(args.username, password)
    if not result.success:
        print(f"Login failed: {result.error}", file=sys.stderr)
        return 1
    user = result.user
    if user is None:
        print("Login failed: no user profile in the response", file=sys.stderr)
        return 1
    print(f"Logged in as {user.full_name or args.username} ({user.usertype_name}), employee_id={user.employee_id}")
    return 0


def _cmd_logout(args: argparse.Namespace) -> int:
    _services(args).auth.logout()
    print("Logged out.")
    return 0


def _cmd_whoami(args: argparse.Namespace) -> int:
    user = _services(args).auth.get_current_user()
    if user is None:
        print("Not logged in.")
        return 1
    print(json.dumps({k: v for k, v in asdict(user).items() if k != "raw"}, ensure_ascii=False, indent=2))
    return 0


def _cmd_locate(args: argparse.Namespace) -> int:
    svc = _services(args)
    try:
        sample = svc.controller.locate()
    except PositionError as exc:
        print(f"Failed to get current location: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(sample.to_dict(), ensure_ascii=False, indent=2))
    return 0


def _cmd_track(args: argparse.Namespace) -> int:
    svc = _services(args)
    if not svc.auth.is_authenticated():
        logger.warning("Not logged in: samples will be stored locally but not synced")
    try:
        first = svc.controller.start(args.interval_ms)
    except PositionError as exc:
        print(f"Cannot start tracking: {exc}", file=sys.stderr)
        return 1
    if first is not None:
        name = first.entry.location_name if first.entry is not None else None
        print(f"First tick: {first.status.value}" + (f" ({name})" if name else ""))

    print(
        f"Tracking every {args.interval_ms / 1000:.0f}s"
        + (f" for {args.duration_seconds:.0f}s" if args.duration_seconds > 0 else " until Ctrl+C"),
        file=sys.stderr,
        flush=True,
    )
    remaining = args.duration_seconds
    try:
        while svc.controller.is_active() and (args.duration_seconds <= 0 or remaining > 0):
            step = 1.0 if args.duration_seconds <= 0 else min(1.0, remaining)
            sleep(step)
            remaining -= step
    except KeyboardInterrupt:
        print("\nInterrupted: stopping tracking.", file=sys.stderr, flush=True)
    finally:
        svc.controller.stop()

    st = svc.controller.status()
    print(
        f"ticks={st.ticks} stored={st.stored} fix_failures={st.fix_failures} "
        f"sync_failures={st.sync_failures} storage_failures={st.storage_failures} skipped={st.skipped}"
    )
    return 0 if st.storage_failures == 0 else 2


def _cmd_history(args: argparse.Namespace) -> int:
    svc = _services(args)
    history = svc.history
    if args.start or args.end:
        entries = history.get_by_date_range(args.start, args.end)
    elif args.range == "today":
        entries = history.get_by_date_range(local_midnight(utc_now(), args.tz), None)
    elif args.range == "week":
        entries = history.get_by_date_range(utc_now() - timedelta(days=7), None)
    else:
        entries = history.get_all()

    if args.merge_remote:
        try:
            remote = svc.sync.fetch_history(
                svc.auth.get_current_user_id(),
                args.start,
                args.end,
                auth_token=svc.auth.get_token(),
            )
        except (SyncError, ValueError) as exc:
            logger.warning("Failed to fetch location history: %s", exc)
        else:
            wanted = {e.id for e in entries}
            entries = [e for e in history.merge_remote(remote) if e.id in wanted or e.id.startswith("remote-")]

    if args.limit is not None:
        entries = entries[: max(0, args.limit)]
    if args.json:
        print(json.dumps([e.to_dict() for e in entries], ensure_ascii=False, indent=2))
        return 0
    if not entries:
        print("No location history found.")
        return 0
    for entry in entries:
        _print_entry(entry)
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    stats = _services(args).history.get_stats()
    print(f"total={stats.total}, today={stats.today}, this_week={stats.this_week}, last_update={stats.last_update}")
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    history = _services(args).history
    if args.format == "csv":
        n = write_history_csv(history.get_all(), args.out)
        print(f"Exported: {args.out} (rows={n})")
        return 0
    text = history.export()
    if args.out == "-":
        print(text)
    else:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"Exported: {args.out}")
    return 0


def _cmd_clear(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to clear history without --yes (this cannot be undone).", file=sys.stderr)
        return 1
    try:
        _services(args).history.clear()
    except StorageError as exc:
        print(f"Failed to clear history: {exc}", file=sys.stderr)
        return 1
    print("Location history cleared.")
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--data-dir", type=str, default=".location_tracker", help="Directory for local state")
    p.add_argument(
        "--tz",
        type=str,
        default=None,
        help="Timezone (IANA) for the 'today' statistic (default: system timezone)",
    )
    p.add_argument("--source", type=str, default="static", choices=POSITION_SOURCES, help="Where fixes come from")
    p.add_argument("--replay-csv", type=str, default=None, help="Track CSV for --source replay")
    p.add_argument("--replay-loop", action="store_true", help="Restart the replay track when it ends")
    p.add_argument("--lat", type=float, default=37.7749, help="Latitude for --source static")
    p.add_argument("--lon", type=float, default=-122.4194, help="Longitude for --source static")
    p.add_argument("--no-geocode", action="store_true", help="Do not resolve location names")
    p.add_argument("--api-base-url", type=str, default=None, help="Override the API origin")
    p.add_argument("--subdomain", type=str, default=None, help="Override the tenant subdomain")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="location_tracker")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_in = sub.add_parser("login", help="Log in and store the session locally")
    p_in.add_argument("--username", type=str, required=True, help="Username (mobile number)")
    p_in.add_argument("--password", type=str, default=None, help="Password (prompted if omitted)")
    p_in.set_defaults(func=_cmd_login)

    p_out = sub.add_parser("logout", help="Forget the stored session")
    p_out.set_defaults(func=_cmd_logout)

    p_who = sub.add_parser("whoami", help="Show the logged-in user")
    p_who.set_defaults(func=_cmd_whoami)

    p_loc = sub.add_parser("locate", help="Get the current location once (not saved)")
    p_loc.set_defaults(func=_cmd_locate)

    p_tr = sub.add_parser("track", help="Sample, store and sync the location periodically")
    p_tr.add_argument("--interval-ms", type=int, default=DEFAULT_INTERVAL_MS, help="Sampling interval (ms)")
    p_tr.add_argument(
        "--duration-seconds",
        type=float,
        default=0.0,
        help="Stop after this many seconds (0 = run until Ctrl+C)",
    )
    p_tr.set_defaults(func=_cmd_track)

    p_hi = sub.add_parser("history", help="List stored locations, newest first")
    p_hi.add_argument("--range", type=str, default="all", choices=["all", "today", "week"], help="Quick filter")
    p_hi.add_argument("--start", type=str, default=None, help="Inclusive start (ISO-8601)")
    p_hi.add_argument("--end", type=str, default=None, help="Inclusive end (ISO-8601)")
    p_hi.add_argument("--limit", type=int, default=None, help="Show at most N entries")
    p_hi.add_argument("--merge-remote", action="store_true", help="Add entries known only to the server")
    p_hi.add_argument("--json", action="store_true", help="Print JSON")
    p_hi.set_defaults(func=_cmd_history)

    p_st = sub.add_parser("stats", help="Show history counters")
    p_st.set_defaults(func=_cmd_stats)

    p_ex = sub.add_parser("export", help="Export history as JSON or CSV")
    p_ex.add_argument("--format", type=str, default="json", choices=["json", "csv"], help="Output format")
    p_ex.add_argument("--out", type=str, default="-", help="Output path ('-' prints JSON to stdout)")
    p_ex.set_defaults(func=_cmd_export)

    p_cl = sub.add_parser("clear", help="Delete all stored locations")
    p_cl.add_argument("--yes", action="store_true", help="Confirm deletion")
    p_cl.set_defaults(func=_cmd_clear)

    for sp in (p_in, p_out, p_who, p_loc, p_tr, p_hi, p_st, p_ex, p_cl):
        _add_common(sp)
    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.cmd == "export" and args.format == "csv" and args.out == "-":
        parser.error("--format csv needs --out PATH")
    if args.cmd == "track" and args.interval_ms <= 0:
        parser.error("--interval-ms must be positive")
    if args.source == "replay" and not (args.replay_csv and Path(args.replay_csv).is_file()):
        parser.error("--source replay needs --replay-csv pointing to an existing CSV file")
    if args.tz:
        try:
            tzinfo_from_name(args.tz)
        except ValueError as exc:
            parser.error(str(exc))
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
