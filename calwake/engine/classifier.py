"""Decide whether calendar instances are active at an instant or on a viewer's day.

Timed events are compared as physical intervals. All-day events arrive with UTC
midnight boundaries regardless of the viewer's timezone, so comparing their raw
instants against a local "now" misfires near day boundaries. Instead both sides
are reduced to a comparable day ordinal (``year * 400 + day_of_year``): the
event boundaries from their UTC fields, the viewer's moment from its local
fields.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, tzinfo

from calwake.datetime_utils import day_ordinal, ensure_utc, local_midnight, to_local, utc_day_ordinal

from .models import EventInstance


def all_day_span(event: EventInstance) -> tuple[int, int]:
    """Half-open ``[start, end)`` ordinal range of an all-day event."""
    start = utc_day_ordinal(event.start)
    end = utc_day_ordinal(event.end)
    if end <= start:
        # Zero-length all-day rows still cover their own day.
        end = utc_day_ordinal(event.start + timedelta(days=1))
    return start, end


def is_active(now: datetime, event: EventInstance, tz: tzinfo | None = None) -> bool:
    if event.all_day:
        start, end = all_day_span(event)
        return start <= day_ordinal(now, tz) < end
    return event.start <= now < event.end


def overlaps_day(day_start: datetime, day_end: datetime, event: EventInstance, tz: tzinfo | None = None) -> bool:
    if event.all_day:
        start, end = all_day_span(event)
        return start <= day_ordinal(day_start, tz) < end
    return event.start < day_end and event.end > day_start


def events_for_day(events: Iterable[EventInstance], day_start: datetime, tz: tzinfo | None = None) -> list[EventInstance]:
    """Instances overlapping the viewer's calendar day that begins at ``day_start``."""
    local_day = to_local(day_start, tz).date()
    start = local_midnight(local_day, tz)
    end = local_midnight(local_day + timedelta(days=1), tz)
    return [event for event in events if overlaps_day(start, end, event, tz)]


def visible_start(event: EventInstance, tz: tzinfo | None = None) -> datetime:
    """Instant at which the viewer first sees ``event`` as active.

    All-day events begin at the viewer's midnight of their UTC start date, which
    can be hours before or after the stored UTC boundary.
    """
    if event.all_day:
        return local_midnight(ensure_utc(event.start).date(), tz)
    return event.start
