"""Wall-clock helpers for AQ schedules, skips and reminder tiers.

Alliances configure reminder times as ``HH:MM`` in their own IANA time zone,
while schedule entries are stored as ``HH:MM`` UTC so the minute tick can
match them with a plain equality query.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")

_DURATION_UNITS: dict[str, timedelta] = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def parse_hhmm(value: str) -> time | None:
    """Parse ``"HH:MM"`` (24h) into a time, or None if malformed."""
    match = _HHMM_RE.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return time(hour=hour, minute=minute)


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_duration(value: str) -> timedelta | None:
    """Parse durations like ``30m``, ``24h``, ``7d`` or ``1w``."""
    match = _DURATION_RE.match(value.strip().lower())
    if not match:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return amount * _DURATION_UNITS[match.group(2)]


def resolve_timezone(name: str | None) -> ZoneInfo | None:
    """Return the ZoneInfo for an IANA name, or None if unknown."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return None


def local_to_utc(
    value: time,
    tz_name: str,
    on_day: date | None = None,
) -> time:
    """Convert a wall-clock time in *tz_name* to UTC.

    The UTC offset depends on the date (DST), so the conversion is done for
    *on_day*, defaulting to today in that zone.
    """
    tz = resolve_timezone(tz_name) or UTC
    day = on_day or datetime.now(tz).date()
    local = datetime.combine(day, value, tzinfo=tz)
    return local.astimezone(UTC).time().replace(second=0, microsecond=0)


def utc_to_local(value: time, tz_name: str, on_day: date | None = None) -> time:
    """Convert a UTC wall-clock time to *tz_name* for display."""
    tz = resolve_timezone(tz_name) or UTC
    day = on_day or datetime.now(UTC).date()
    utc = datetime.combine(day, value, tzinfo=UTC)
    return utc.astimezone(tz).time().replace(second=0, microsecond=0)


def fire_time_today(hhmm: str, tz_name: str, now: datetime) -> datetime | None:
    """Return today's *hhmm* in *tz_name*, where today is *now*'s date in that zone.

    Returns None if *hhmm* is malformed. The result is tz-aware UTC.
    """
    at = parse_hhmm(hhmm)
    if at is None:
        return None
    tz = resolve_timezone(tz_name) or UTC
    today = now.astimezone(tz).date()
    return datetime.combine(today, at, tzinfo=tz).astimezone(UTC)


def utc_weekday(now: datetime) -> int:
    """Day of week with 0=Sunday, matching how schedule entries are stored."""
    return (now.astimezone(UTC).weekday() + 1) % 7
