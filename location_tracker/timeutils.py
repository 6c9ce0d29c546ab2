"""Time parsing and formatting utilities."""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta, tzinfo

from zoneinfo import ZoneInfo

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Asia/Kolkata".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"Invalid timezone: {tz_name!r}. Example: Asia/Kolkata") from exc


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with milliseconds and a ``Z`` suffix.

    Naive datetimes are treated as UTC.
    """

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(text: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Accepts a trailing ``Z``. Strings without an offset are treated as UTC.

    Raises:
        ValueError: If cannot parse.
    """

    s = text.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"Cannot parse timestamp: {text!r}. Expected e.g. 2024-01-01T00:00:00Z") from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def coerce_dt(value: datetime | str) -> datetime:
    """Accept a datetime or an ISO string, return an aware datetime."""

    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return parse_iso(value)


def epoch_ms_from_dt(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds.

    Args:
        dt: Datetime. If naive, will be treated as UTC (discouraged).

    Returns:
        Epoch milliseconds.
    """

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def local_tzinfo(tz_name: str | None = None) -> tzinfo | None:
    """Named timezone, or None for the system timezone (as ``datetime.astimezone`` reads it)."""

    return tzinfo_from_name(tz_name) if tz_name else None


def local_midnight(now: datetime, tz_name: str | None = None) -> datetime:
    """Start of the current day of ``now`` in ``tz_name``, or in the system timezone."""

    tz = local_tzinfo(tz_name)
    local = coerce_dt(now).astimezone(tz)
    if tz is None:
        return datetime.combine(local.date(), time.min).astimezone()
    return datetime.combine(local.date(), time.min).replace(tzinfo=tz)


def week_ago(now: datetime) -> datetime:
    return coerce_dt(now) - timedelta(days=7)
