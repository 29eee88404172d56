"""Narrow interfaces to the collaborators the engine drives.

EventSource reads calendar instances, TimerPort arms one-shot wake-ups, and
NotificationPort renders user-visible alerts. Implementations live in
``ics_source``, ``timers`` and ``notifications``; tests substitute fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from .errors import ExactTimerUnavailable, TimerPortRejected
from .models import EventInstance, NotificationKind

LOGGER = logging.getLogger("calwake.ports")


@dataclass(slots=True, frozen=True)
class ArmResult:
    """Outcome of arming a timer; ``exact`` is False when the port downgraded it."""

    timer_id: str
    when: datetime
    exact: bool


class EventSource(Protocol):
    async def query(self, range_start: datetime, range_end: datetime) -> list[EventInstance]:
        """Instances overlapping the range, ordered by start.

        Raises PermissionDenied when the calendar cannot be read.
        """
        ...


class TimerPort(Protocol):
    async def arm(self, timer_id: str, when: datetime, exact: bool = True) -> ArmResult:
        """Arm (or replace) the timer ``timer_id``.

        May raise ExactTimerUnavailable when ``exact`` is requested without the
        privilege, or TimerPortRejected when the timer cannot be armed at all.
        """
        ...

    async def cancel(self, timer_id: str) -> None: ...


class NotificationPort(Protocol):
    async def show(self, kind: NotificationKind, payload: dict[str, Any]) -> None: ...

    async def cancel(self, kind: NotificationKind, notification_id: str) -> None: ...


async def arm_with_fallback(
    timers: TimerPort,
    timer_id: str,
    when: datetime,
    *,
    logger: logging.Logger | None = None,
) -> ArmResult | None:
    """Arm an exact timer, degrading to inexact; None when the port refuses outright."""
    log = logger or LOGGER
    try:
        result = await timers.arm(timer_id, when, exact=True)
    except ExactTimerUnavailable:
        log.warning("[timers] Exact timer unavailable for %s; falling back to inexact", timer_id)
        try:
            result = await timers.arm(timer_id, when, exact=False)
        except TimerPortRejected as exc:
            log.warning("[timers] %s", exc)
            return None
    except TimerPortRejected as exc:
        log.warning("[timers] %s", exc)
        return None
    if not result.exact:
        log.info("[timers] Timer %s armed inexact for %s", timer_id, when.isoformat())
    return result
