"""Trigger types and the single entry point that routes them.

Every external stimulus (process start, timer expiry, a user action on a
notification, a calendar change) becomes one trigger. Handling is serialized:
the dispatcher holds one lock for the whole of each trigger, so two refreshes
never interleave their read-modify-write of the schedule snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from calwake.datetime_utils import utc_now

from .alarm_planner import AlarmPlanner
from .live_refresh import LivePlan, LiveRefreshPlanner
from .models import (
    ALARM_REFRESH_TIMER_ID,
    FULL_ALERT,
    LIVE_REFRESH_TIMER_ID,
    ScheduledAlarm,
    ScheduleSnapshot,
    unique_id_from_timer,
)
from .ports import NotificationPort, TimerPort, arm_with_fallback
from .store import ScheduleStore

LOGGER = logging.getLogger("calwake.triggers")

DEFAULT_REFRESH_INTERVAL = timedelta(minutes=15)


@dataclass(slots=True, frozen=True)
class BootCompleted:
    pass


@dataclass(slots=True, frozen=True)
class TimerFired:
    timer_id: str


@dataclass(slots=True, frozen=True)
class PermissionGranted:
    pass


@dataclass(slots=True, frozen=True)
class UserSnoozed:
    event_id: int
    title: str
    end_time: datetime
    minutes: int


@dataclass(slots=True, frozen=True)
class UserDismissed:
    unique_id: str


@dataclass(slots=True, frozen=True)
class CalendarChanged:
    pass


@dataclass(slots=True, frozen=True)
class NotificationsToggled:
    enabled: bool


Trigger = (
    BootCompleted
    | TimerFired
    | PermissionGranted
    | UserSnoozed
    | UserDismissed
    | CalendarChanged
    | NotificationsToggled
)

StateListener = Callable[[list[ScheduledAlarm], LivePlan | None], Awaitable[None]]


class TriggerDispatcher:
    """Route triggers to the planners, one at a time."""

    def __init__(
        self,
        *,
        alarms: AlarmPlanner,
        live: LiveRefreshPlanner,
        store: ScheduleStore,
        timers: TimerPort,
        notifications: NotificationPort,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        on_state_changed: StateListener | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self._alarms = alarms
        self._live = live
        self._store = store
        self._timers = timers
        self._notifications = notifications
        self._refresh_interval = refresh_interval
        self._on_state_changed = on_state_changed
        self._clock = clock
        self._logger = logger or LOGGER
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._last_live: LivePlan | None = None

    @property
    def last_live_plan(self) -> LivePlan | None:
        return self._last_live

    def dispatch(self, trigger: Trigger) -> asyncio.Task:
        """Schedule ``trigger`` and return the task that completes when it has been handled."""
        task = asyncio.create_task(self.handle(trigger))
        self._track(task)
        return task

    async def timer_fired(self, timer_id: str) -> None:
        await self.handle(TimerFired(timer_id))

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle(self, trigger: Trigger) -> None:
        async with self._lock:
            self._logger.debug("[triggers] Handling %s", trigger)
            try:
                await self._route(trigger)
            except Exception:
                self._logger.exception("[triggers] Failed to handle %s", type(trigger).__name__)
                return
            await self._publish_state()

    async def _route(self, trigger: Trigger) -> None:
        if isinstance(trigger, BootCompleted):
            # Timers do not survive a restart; whatever the store remembers as armed is gone.
            self._store.forget_armed()
            await self._refresh_all()
        elif isinstance(trigger, TimerFired):
            await self._timer_fired(trigger.timer_id)
        elif isinstance(trigger, (PermissionGranted, CalendarChanged)):
            await self._refresh_all()
        elif isinstance(trigger, UserSnoozed):
            await self._alarms.snooze(trigger.event_id, trigger.title, trigger.end_time, trigger.minutes, self._clock())
        elif isinstance(trigger, UserDismissed):
            await self._alarms.cancel(trigger.unique_id)
            await self._notifications.cancel(FULL_ALERT, trigger.unique_id)
        elif isinstance(trigger, NotificationsToggled):
            await self._toggle_notifications(trigger.enabled)
        else:
            self._logger.warning("[triggers] Unknown trigger %r", trigger)

    async def _timer_fired(self, timer_id: str) -> None:
        if timer_id == LIVE_REFRESH_TIMER_ID:
            await self._refresh_live()
        elif timer_id == ALARM_REFRESH_TIMER_ID:
            await self._refresh_alarms()
        elif unique_id_from_timer(timer_id) is not None:
            await self._alarms.alarm_fired(timer_id, self._clock())
            await self._refresh_alarms()
        else:
            self._logger.warning("[triggers] Ignoring unknown timer %s", timer_id)

    async def _toggle_notifications(self, enabled: bool) -> None:
        def _apply(current: ScheduleSnapshot) -> ScheduleSnapshot:
            return replace(current, settings=replace(current.settings, notifications_enabled=enabled))

        self._store.update(_apply)
        self._logger.info("[triggers] Notifications %s", "enabled" if enabled else "disabled")
        if enabled:
            await self._refresh_alarms()
            return
        await self._alarms.disable_all()
        await self._timers.cancel(ALARM_REFRESH_TIMER_ID)

    async def _refresh_all(self) -> None:
        await self._refresh_alarms()
        await self._refresh_live()

    async def _refresh_alarms(self) -> None:
        now = self._clock()
        plan = await self._alarms.refresh(now)
        if plan.skipped is not None:
            return
        await arm_with_fallback(self._timers, ALARM_REFRESH_TIMER_ID, now + self._refresh_interval, logger=self._logger)

    async def _refresh_live(self) -> None:
        self._last_live = await self._live.refresh(self._clock())

    async def _publish_state(self) -> None:
        if self._on_state_changed is None:
            return
        try:
            await self._on_state_changed(self._alarms.scheduled_alarms(self._clock()), self._last_live)
        except Exception:
            self._logger.warning("[triggers] State listener failed", exc_info=True)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)

        def _cleanup(_task: asyncio.Task) -> None:
            self._tasks.discard(_task)

        task.add_done_callback(_cleanup)
