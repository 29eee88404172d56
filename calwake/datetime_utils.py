"""Shared datetime helpers: instants, epoch conversion and viewer-local day math."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Any factor above the longest day-of-year (366) keeps ordinals collision free
# across year boundaries.
DAY_ORDINAL_YEAR_FACTOR = 400


def utc_now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(UTC)


def local_now(tz: tzinfo | None = None) -> datetime:
    """Get current datetime in the viewer's timezone (system local when tz is None)."""
    if tz is None:
        return datetime.now().astimezone()
    return datetime.now(tz)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure datetime is in UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_local(dt: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert an instant to the viewer's wall clock."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    if tz is None:
        return dt.astimezone()
    return dt.astimezone(tz)


def to_epoch_ms(dt: datetime) -> int:
    return int(round(ensure_utc(dt).timestamp() * 1000))


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Look up an IANA zone name; None (or an unknown name) means system local."""
    if not name:
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return None


def ordinal_for(year: int, day_of_year: int) -> int:
    return year * DAY_ORDINAL_YEAR_FACTOR + day_of_year


def day_ordinal(moment: datetime, tz: tzinfo | None = None) -> int:
    """Comparable day value of ``moment`` as seen on the viewer's calendar."""
    local = to_local(moment, tz)
    return ordinal_for(local.year, local.timetuple().tm_yday)


def utc_day_ordinal(moment: datetime) -> int:
    """Comparable day value from the instant's UTC fields (all-day boundaries)."""
    utc = ensure_utc(moment)
    return ordinal_for(utc.year, utc.timetuple().tm_yday)


def local_midnight(day: date, tz: tzinfo | None = None) -> datetime:
    """Instant at which ``day`` begins on the viewer's wall clock."""
    if tz is None:
        return datetime.combine(day, time.min).astimezone()
    return datetime.combine(day, time.min, tzinfo=tz)


def start_of_local_day(moment: datetime, tz: tzinfo | None = None) -> datetime:
    return local_midnight(to_local(moment, tz).date(), tz)


def next_local_midnight(moment: datetime, tz: tzinfo | None = None) -> datetime:
    """Zero the time-of-day fields of ``moment`` and advance one calendar day."""
    return local_midnight(to_local(moment, tz).date() + timedelta(days=1), tz)


def format_time_range(start: datetime, end: datetime, all_day: bool, tz: tzinfo | None = None) -> str:
    if all_day:
        return "All Day"
    return f"{to_local(start, tz):%H:%M} - {to_local(end, tz):%H:%M}"
