"""ICS/WebCal event source: fetch feeds and expand them into event instances."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta

import httpx
from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar

from calwake.utils import parse_hex_color, stable_int64

from .config import CalendarConfig
from .errors import PermissionDenied
from .models import EventInstance

LOGGER = logging.getLogger("calwake.ics_source")

MAX_OCCURRENCES_PER_EVENT = 500
UNTIL_PATTERN = re.compile(r"UNTIL=[^;]*")
DENIED_STATUSES = {401, 403}


@dataclass(slots=True)
class _FeedState:
    url: str
    etag: str | None = None
    last_modified: str | None = None
    body: bytes | None = None
    calendar_name: str | None = None
    denied: bool = False
    changed: bool = False


@dataclass(slots=True)
class _Master:
    uid: str
    title: str
    start: datetime
    duration: timedelta
    all_day: bool
    color: int
    component: object
    overridden: set[datetime] = field(default_factory=set)


def _coerce_datetime(value, tzinfo) -> tuple[datetime | None, bool]:
    """DATE values become UTC-midnight all-day boundaries; floating times use ``tzinfo``."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=tzinfo)
        return value, False
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=UTC), True
    return None, False


def _decoded(component, name: str):
    try:
        return component.decoded(name)
    except Exception:  # pylint: disable=broad-except
        return None


def _component_color(component) -> int:
    raw = component.get("COLOR") or component.get("X-APPLE-CALENDAR-COLOR")
    return parse_hex_color(str(raw)) if raw else 0


def _exdates(component, tzinfo) -> list[datetime]:
    raw = component.get("EXDATE")
    if raw is None:
        return []
    entries = raw if isinstance(raw, list) else [raw]
    excluded: list[datetime] = []
    for entry in entries:
        for item in getattr(entry, "dts", []):
            value, _ = _coerce_datetime(item.dt, tzinfo)
            if value is not None:
                excluded.append(value)
    return excluded


def _until_utc(value, start: datetime) -> datetime | None:
    """UNTIL as an aware UTC instant; a bare date covers the whole day in the start's zone."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=start.tzinfo)
        return value.astimezone(UTC)
    if isinstance(value, date):
        return datetime.combine(value, time.max.replace(microsecond=0), tzinfo=start.tzinfo).astimezone(UTC)
    return None


def _rule_text(rule, start: datetime) -> str:
    """RRULE text with UNTIL rewritten in UTC, which dateutil requires for an aware DTSTART."""
    text = rule.to_ical().decode("utf-8")
    values = rule.get("UNTIL") or []
    until = _until_utc(values[0] if isinstance(values, list) else values, start)
    if until is None:
        return text
    return UNTIL_PATTERN.sub(f"UNTIL={until.strftime('%Y%m%dT%H%M%SZ')}", text)


class IcsEventSource:
    """Event source over one or more ICS feeds, with conditional GET caching.

    Only the raw feed bodies are cached (for HTTP 304 handling); instances are
    rebuilt on every query.
    """

    def __init__(
        self,
        *,
        config: CalendarConfig,
        client: httpx.AsyncClient | None = None,
        local_tz=None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._local_tz = local_tz
        self._logger = logger or LOGGER
        self._feed_states = {url: _FeedState(url=url) for url in config.feeds}

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def query(self, range_start: datetime, range_end: datetime) -> list[EventInstance]:
        if not self._feed_states:
            raise PermissionDenied("No calendar feeds configured")
        self._ensure_client()
        instances: list[EventInstance] = []
        for state in self._feed_states.values():
            await self._refresh_feed(state)
            if state.body is None:
                continue
            try:
                calendar = Calendar.from_ical(state.body)
            except Exception as exc:  # pylint: disable=broad-except
                self._logger.warning("[ics] Calendar parse failed for %s: %s", state.url, exc)
                continue
            calendar_name = calendar.get("X-WR-CALNAME")
            if calendar_name:
                state.calendar_name = str(calendar_name)
            instances.extend(self.collect_instances(calendar, state.url, range_start, range_end))
        if all(state.denied for state in self._feed_states.values()):
            raise PermissionDenied("Every calendar feed refused access")
        instances.sort(key=lambda event: (event.start, event.end))
        return instances

    async def poll(self) -> bool:
        """Re-fetch every feed; True when any feed changed since the previous poll.

        Changes picked up by an intervening ``query()`` still count.
        """
        if not self._feed_states:
            return False
        self._ensure_client()
        changed = False
        for state in self._feed_states.values():
            await self._refresh_feed(state)
            changed = changed or state.changed
            state.changed = False
        return changed

    def _ensure_client(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, timeout=self._config.request_timeout)

    async def _refresh_feed(self, state: _FeedState) -> None:
        """Fetch one feed, flagging ``state.changed`` until the next ``poll()``."""
        headers: dict[str, str] = {}
        if state.etag:
            headers["If-None-Match"] = state.etag
        if state.last_modified:
            headers["If-Modified-Since"] = state.last_modified
        try:
            response = await self._client.get(state.url, headers=headers)
        except httpx.HTTPError as exc:
            self._logger.warning("[ics] Calendar fetch failed for %s: %s", state.url, exc)
            return
        if response.status_code == 304:
            return
        if response.status_code in DENIED_STATUSES:
            self._logger.warning("[ics] Calendar feed %s refused access (%s)", state.url, response.status_code)
            was_denied = state.denied
            state.denied = True
            state.body = None
            state.changed = state.changed or not was_denied
            return
        if response.status_code >= 400:
            self._logger.warning("[ics] Calendar fetch returned %s for %s", response.status_code, state.url)
            return
        state.denied = False
        state.etag = response.headers.get("etag") or state.etag
        state.last_modified = response.headers.get("last-modified") or state.last_modified
        state.changed = state.changed or response.content != state.body
        state.body = response.content

    def collect_instances(
        self,
        calendar: Calendar,
        source_url: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[EventInstance]:
        """Instances of ``calendar`` overlapping ``[range_start, range_end]``."""
        tzinfo = self._local_tz or range_start.astimezone().tzinfo
        masters: dict[str, _Master] = {}
        overrides: list[tuple[str, datetime, object]] = []
        for component in calendar.walk("VEVENT"):
            uid = component.get("UID")
            if not uid:
                continue
            recurrence_id = _decoded(component, "RECURRENCE-ID")
            if recurrence_id is not None:
                original, _ = _coerce_datetime(recurrence_id, tzinfo)
                if original is not None:
                    overrides.append((str(uid), original, component))
                continue
            master = self._master_from_component(component, str(uid), tzinfo)
            if master is not None:
                masters[master.uid] = master

        instances: list[EventInstance] = []
        for uid, original, component in overrides:
            master = masters.get(uid)
            if master is not None:
                master.overridden.add(original)
            replacement = self._master_from_component(component, uid, tzinfo)
            if replacement is None:
                continue
            if self._overlaps(replacement.start, replacement.start + replacement.duration, range_start, range_end):
                instances.append(self._instance(source_url, replacement, replacement.start))
        for master in masters.values():
            for start in self._occurrences(master, tzinfo, range_start, range_end):
                if start in master.overridden:
                    continue
                if self._overlaps(start, start + master.duration, range_start, range_end):
                    instances.append(self._instance(source_url, master, start))
        return instances

    def _master_from_component(self, component, uid: str, tzinfo) -> _Master | None:
        status = str(component.get("STATUS") or "").strip().upper()
        if status == "CANCELLED":
            return None
        start, all_day = _coerce_datetime(_decoded(component, "DTSTART"), tzinfo)
        if start is None:
            return None
        end, _ = _coerce_datetime(_decoded(component, "DTEND"), tzinfo)
        if end is None:
            duration = _decoded(component, "DURATION")
            if isinstance(duration, timedelta):
                end = start + duration
            else:
                end = start + (timedelta(days=1) if all_day else timedelta(0))
        title = str(component.get("SUMMARY") or "No Title").strip() or "No Title"
        return _Master(
            uid=uid,
            title=title,
            start=start,
            duration=end - start,
            all_day=all_day,
            color=_component_color(component),
            component=component,
        )

    def _occurrences(self, master: _Master, tzinfo, range_start: datetime, range_end: datetime) -> Iterator[datetime]:
        rule = master.component.get("RRULE")
        if not rule:
            yield master.start
            return
        try:
            rule_set = rruleset()
            for entry in rule if isinstance(rule, list) else [rule]:
                rule_set.rrule(rrulestr(_rule_text(entry, master.start), dtstart=master.start))
            for excluded in _exdates(master.component, tzinfo):
                rule_set.exdate(excluded)
            lower = range_start - master.duration
            for count, occurrence in enumerate(rule_set.between(lower, range_end, inc=True)):
                if count >= MAX_OCCURRENCES_PER_EVENT:
                    self._logger.debug("[ics] Truncated recurrence expansion for %s", master.uid)
                    break
                yield occurrence
        except (ValueError, TypeError) as exc:
            self._logger.debug("[ics] Could not expand RRULE for %s: %s", master.uid, exc)
            yield master.start

    @staticmethod
    def _overlaps(start: datetime, end: datetime, range_start: datetime, range_end: datetime) -> bool:
        return end >= range_start and start <= range_end

    @staticmethod
    def _instance(source_url: str, master: _Master, start: datetime) -> EventInstance:
        return EventInstance(
            event_id=stable_int64(source_url, master.uid),
            title=master.title,
            start=start,
            end=start + master.duration,
            color=master.color,
            all_day=master.all_day,
        )
