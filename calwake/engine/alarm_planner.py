"""Per-instance alarm scheduling with dedup against already-armed timers.

Every refresh looks at the instances starting within the alarm window, derives
a deterministic unique id per (event, start) pair and only arms ids the store
does not already consider armed. Ids that dropped out of the window are
cancelled, except snoozes: those are user overrides independent of calendar
state and survive until they fire or are dismissed.

Timers are armed before the snapshot is written. A crash in between leaves the
store believing fewer timers are armed than really are, and re-arming the same
id simply overwrites the existing timer, so the next refresh converges.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, tzinfo
from typing import Any

from calwake.datetime_utils import format_time_range, utc_now

from .errors import PermissionDenied
from .models import (
    FULL_ALERT,
    SNOOZE_PRESETS_MINUTES,
    NotifierSettings,
    ScheduledAlarm,
    ScheduleSnapshot,
    alarm_timer_id,
    unique_id_from_timer,
)
from .ports import EventSource, NotificationPort, TimerPort, arm_with_fallback
from .store import ScheduleStore

LOGGER = logging.getLogger("calwake.alarm_planner")

DEFAULT_ALARM_WINDOW = timedelta(hours=24)


@dataclass(slots=True)
class AlarmPlan:
    to_arm: list[ScheduledAlarm] = field(default_factory=list)
    to_cancel: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    degraded: bool = False
    skipped: str | None = None


def build_alert_payload(
    alarm: ScheduledAlarm,
    settings: NotifierSettings,
    tz: tzinfo | None = None,
) -> dict[str, Any]:
    """Full-alert payload, including the actions that route back as snooze/dismiss."""
    return {
        "id": alarm.unique_id,
        "event_id": alarm.event_id,
        "title": alarm.title,
        "start": alarm.trigger_time.isoformat(),
        "end": alarm.end_time.isoformat(),
        "time_text": format_time_range(alarm.trigger_time, alarm.end_time, False, tz),
        "snoozed": alarm.is_snoozed,
        "sound": settings.sound_enabled,
        "sound_uri": settings.sound_uri,
        "vibrate": settings.vibration_enabled,
        "snooze_options": list(SNOOZE_PRESETS_MINUTES),
        "actions": [
            {
                "action": "snooze",
                "event_id": alarm.event_id,
                "title": alarm.title,
                "end": alarm.end_time.isoformat(),
                "unique_id": alarm.unique_id,
            },
            {"action": "dismiss", "unique_id": alarm.unique_id},
        ],
    }


class AlarmPlanner:
    """Arm, cancel and persist per-instance event alarms."""

    def __init__(
        self,
        *,
        source: EventSource,
        timers: TimerPort,
        notifications: NotificationPort,
        store: ScheduleStore,
        window: timedelta = DEFAULT_ALARM_WINDOW,
        tz: tzinfo | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._source = source
        self._timers = timers
        self._notifications = notifications
        self._store = store
        self._window = window
        self._tz = tz
        self._logger = logger or LOGGER

    async def refresh(self, now: datetime | None = None) -> AlarmPlan:
        now = now or utc_now()
        snapshot = self._store.load()
        if not snapshot.settings.notifications_enabled:
            self._logger.debug("[alarms] Notifications disabled, skipping alarm scheduling")
            return AlarmPlan(skipped="notifications_disabled")
        window_end = now + self._window
        try:
            events = await self._source.query(now, window_end)
        except PermissionDenied as exc:
            self._logger.warning("[alarms] Calendar not readable, skipping alarm scheduling: %s", exc)
            return AlarmPlan(skipped="permission_denied")

        candidates: dict[str, ScheduledAlarm] = {}
        for event in events:
            # All-day events never need a timed wake-up.
            if event.all_day:
                continue
            if not now < event.start <= window_end:
                continue
            alarm = ScheduledAlarm.for_instance(event)
            candidates.setdefault(alarm.unique_id, alarm)

        future_snoozed = [alarm for alarm in snapshot.snoozed if alarm.trigger_time > now]
        snoozed_ids = snapshot.snoozed_ids()
        known = {alarm.unique_id: alarm for alarm in snapshot.alarm_details}
        armed = snapshot.armed_ids

        plan = AlarmPlan()
        plan.to_arm = [alarm for unique_id, alarm in candidates.items() if unique_id not in armed]
        plan.to_arm.extend(
            alarm for alarm in future_snoozed if alarm.unique_id not in armed and alarm.unique_id not in candidates
        )
        for unique_id in sorted(armed):
            if unique_id in candidates or unique_id in snoozed_ids:
                continue
            previous = known.get(unique_id)
            if previous is not None and previous.trigger_time <= now:
                # Already fired; nothing left to cancel.
                continue
            plan.to_cancel.append(unique_id)

        for alarm in plan.to_arm:
            result = await arm_with_fallback(self._timers, alarm.timer_id, alarm.trigger_time, logger=self._logger)
            if result is None:
                plan.rejected.append(alarm.unique_id)
            elif not result.exact:
                plan.degraded = True
        for unique_id in plan.to_cancel:
            await self._cancel_timer(unique_id)

        rejected = set(plan.rejected)
        organic = [alarm for unique_id, alarm in candidates.items() if unique_id not in rejected]
        kept_snoozes = [alarm for alarm in future_snoozed if alarm.unique_id not in rejected]
        updated = replace(
            snapshot,
            armed_ids=frozenset(alarm.unique_id for alarm in (*organic, *kept_snoozes)),
            alarm_details=(*organic, *kept_snoozes),
            snoozed=tuple(future_snoozed),
        )
        self._save(updated)
        self._logger.info(
            "[alarms] Refreshed %d alarm(s): %d armed, %d cancelled, %d rejected%s",
            len(updated.armed_ids),
            len(plan.to_arm) - len(plan.rejected),
            len(plan.to_cancel),
            len(plan.rejected),
            " (inexact)" if plan.degraded else "",
        )
        return plan

    async def snooze(
        self,
        event_id: int,
        title: str,
        end_time: datetime,
        minutes: int,
        now: datetime | None = None,
    ) -> ScheduledAlarm | None:
        """Arm a user snooze immediately, outside the calendar window logic."""
        if minutes <= 0:
            raise ValueError("Snooze minutes must be positive")
        now = now or utc_now()
        alarm = ScheduledAlarm.for_snooze(event_id, title, now + timedelta(minutes=minutes), end_time)
        result = await arm_with_fallback(self._timers, alarm.timer_id, alarm.trigger_time, logger=self._logger)
        if result is None:
            self._logger.warning("[alarms] Snooze for '%s' could not be armed", title)
            return None

        def _add(current: ScheduleSnapshot) -> ScheduleSnapshot:
            return replace(
                current,
                armed_ids=frozenset(current.armed_ids | {alarm.unique_id}),
                alarm_details=(*current.alarm_details, alarm),
                snoozed=(*current.snoozed, alarm),
            )

        self._update(_add)
        self._logger.info("[alarms] Snoozed '%s' for %d minute(s)", title, minutes)
        return alarm

    async def cancel(self, unique_id: str) -> None:
        """Cancel one alarm timer and forget it everywhere; unknown ids are fine."""
        await self._cancel_timer(unique_id)
        self._update(lambda current: current.without(unique_id))
        self._logger.info("[alarms] Cancelled alarm %s", unique_id)

    async def alarm_fired(self, timer_id: str, now: datetime | None = None) -> ScheduledAlarm | None:
        """Post the full alert for a fired alarm timer and retire its record."""
        now = now or utc_now()
        unique_id = unique_id_from_timer(timer_id)
        if unique_id is None:
            self._logger.warning("[alarms] Ignoring non-alarm timer %s", timer_id)
            return None
        snapshot = self._store.load()
        alarm = snapshot.find(unique_id)
        if alarm is None:
            self._logger.warning("[alarms] No record for fired alarm %s; ignoring", unique_id)
            return None
        late = (now - alarm.trigger_time).total_seconds()
        if late > 60:
            self._logger.info("[alarms] Alarm '%s' fired %.0f second(s) late", alarm.title, late)
        try:
            await self._notifications.show(FULL_ALERT, build_alert_payload(alarm, snapshot.settings, self._tz))
        except Exception:
            self._logger.exception("[alarms] Failed to show alert for '%s'", alarm.title)
        self._update(lambda current: current.without(unique_id))
        return alarm

    async def disable_all(self) -> list[str]:
        """Cancel every organic alarm; snoozes stay since the user asked for them."""
        snapshot = self._store.load()
        snoozed_ids = snapshot.snoozed_ids()
        cancelled = sorted(unique_id for unique_id in snapshot.armed_ids if unique_id not in snoozed_ids)
        for unique_id in cancelled:
            await self._cancel_timer(unique_id)

        def _strip(current: ScheduleSnapshot) -> ScheduleSnapshot:
            keep = current.snoozed_ids()
            return replace(
                current,
                armed_ids=frozenset(current.armed_ids & keep),
                alarm_details=tuple(alarm for alarm in current.alarm_details if alarm.unique_id in keep),
            )

        self._update(_strip)
        self._logger.info("[alarms] Cancelled %d organic alarm(s)", len(cancelled))
        return cancelled

    def scheduled_alarms(self, now: datetime | None = None) -> list[ScheduledAlarm]:
        now = now or utc_now()
        alarms = [alarm for alarm in self._store.load().alarm_details if alarm.trigger_time > now]
        return sorted(alarms, key=lambda alarm: alarm.trigger_time)

    async def _cancel_timer(self, unique_id: str) -> None:
        try:
            await self._timers.cancel(alarm_timer_id(unique_id))
        except Exception:
            self._logger.warning("[alarms] Failed to cancel timer for %s", unique_id, exc_info=True)

    def _save(self, snapshot: ScheduleSnapshot) -> None:
        try:
            self._store.save(snapshot)
        except OSError:
            self._logger.exception("[alarms] Failed to persist schedule snapshot")

    def _update(self, mutate: Callable[[ScheduleSnapshot], ScheduleSnapshot]) -> None:
        try:
            self._store.update(mutate)
        except OSError:
            self._logger.exception("[alarms] Failed to persist schedule snapshot")
