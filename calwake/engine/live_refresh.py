"""Keep a single "live" notification in step with the event in progress.

Each refresh picks the event to display, then arms exactly one timer for the
next instant at which that choice could change. The query window is much wider
than the alarm window so that a future wake time always exists; with nothing
on the calendar the chain still wakes once per window as maintenance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any

from calwake.datetime_utils import format_time_range, next_local_midnight, utc_now

from .classifier import events_for_day, is_active, visible_start
from .errors import PermissionDenied
from .models import LIVE_NOTIFICATION_ID, LIVE_ONGOING, LIVE_REFRESH_TIMER_ID, EventInstance
from .ports import EventSource, NotificationPort, TimerPort, arm_with_fallback

LOGGER = logging.getLogger("calwake.live_refresh")

DEFAULT_LIVE_WINDOW = timedelta(days=30)


@dataclass(slots=True, frozen=True)
class LivePlan:
    display: EventInstance | None
    next_wake: datetime | None
    exact: bool = True
    today: tuple[EventInstance, ...] = ()


def choose_display_event(active: list[EventInstance]) -> EventInstance | None:
    """Shortest timed event wins; all-day events only when nothing timed is active."""
    timed = [event for event in active if not event.all_day]
    if timed:
        return min(timed, key=lambda event: event.end - event.start)
    return active[0] if active else None


def build_live_payload(event: EventInstance, tz: tzinfo | None = None) -> dict[str, Any]:
    return {
        "id": LIVE_NOTIFICATION_ID,
        "event_id": event.event_id,
        "title": event.title,
        "start": event.start.isoformat(),
        "end": event.end.isoformat(),
        "all_day": event.all_day,
        "color": event.color,
        "time_text": format_time_range(event.start, event.end, event.all_day, tz),
    }


class LiveRefreshPlanner:
    """Drive the live notification and its single chained refresh timer."""

    def __init__(
        self,
        *,
        source: EventSource,
        timers: TimerPort,
        notifications: NotificationPort,
        window: timedelta = DEFAULT_LIVE_WINDOW,
        tz: tzinfo | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._source = source
        self._timers = timers
        self._notifications = notifications
        self._window = window
        self._tz = tz
        self._logger = logger or LOGGER

    def plan(self, now: datetime, events: list[EventInstance]) -> LivePlan:
        active = [event for event in events if is_active(now, event, self._tz)]
        display = choose_display_event(active)

        candidates: list[datetime] = []
        if display is not None:
            if display.all_day:
                # The viewer sees the event end at their own midnight, not the UTC boundary.
                candidates.append(next_local_midnight(now, self._tz))
            else:
                candidates.append(display.end)
        starts = (visible_start(event, self._tz) for event in events)
        upcoming = [start for start in starts if start > now]
        if upcoming:
            candidates.append(min(upcoming))
        next_wake = min(candidates) if candidates else now + self._window
        today = tuple(events_for_day(events, now, self._tz))
        return LivePlan(display=display, next_wake=next_wake, today=today)

    async def refresh(self, now: datetime | None = None) -> LivePlan:
        now = now or utc_now()
        try:
            events = await self._source.query(now, now + self._window)
        except PermissionDenied as exc:
            self._logger.warning("[live] Calendar not readable, skipping live refresh: %s", exc)
            return LivePlan(display=None, next_wake=None)

        plan = self.plan(now, events)
        try:
            if plan.display is not None:
                self._logger.debug("[live] Showing live notification for '%s'", plan.display.title)
                await self._notifications.show(LIVE_ONGOING, build_live_payload(plan.display, self._tz))
            else:
                await self._notifications.cancel(LIVE_ONGOING, LIVE_NOTIFICATION_ID)
        except Exception:
            self._logger.exception("[live] Failed to update live notification")

        result = await arm_with_fallback(self._timers, LIVE_REFRESH_TIMER_ID, plan.next_wake, logger=self._logger)
        if result is None:
            self._logger.warning("[live] Refresh chain not re-armed; waiting for the next trigger")
            return LivePlan(display=plan.display, next_wake=None, today=plan.today)
        self._logger.info("[live] Next live refresh at %s", plan.next_wake.isoformat())
        return LivePlan(display=plan.display, next_wake=plan.next_wake, exact=result.exact, today=plan.today)
