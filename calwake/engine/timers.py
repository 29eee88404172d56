"""
One-shot wall-clock timers on the asyncio loop

Implements the timer port for a long-running process:
- arm(id, when, exact) replaces any timer already armed under the same id
- timers sleep in bounded slices and re-check the wall clock, so a host that
  was suspended fires late instead of never
- without the exact-timer privilege, timers are downgraded to fire on the next
  whole minute and the result reports exact=False
- fired timers invoke a callback with the timer id (normally the trigger
  dispatcher)

Timers live only as long as the process; every start therefore behaves like a
reboot for the engine.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from calwake.datetime_utils import ensure_utc, utc_now

from .errors import TimerPortRejected
from .ports import ArmResult

FireCallback = Callable[[str], Awaitable[None]]

LOGGER = logging.getLogger("calwake.timers")

MAX_SLEEP_SLICE_SECONDS = 60.0
DEFAULT_HORIZON = timedelta(days=400)


def round_up_to_minute(when: datetime) -> datetime:
    floored = when.replace(second=0, microsecond=0)
    if floored == when:
        return when
    return floored + timedelta(minutes=1)


class AsyncioTimerPort:
    def __init__(
        self,
        *,
        on_fire: FireCallback | None = None,
        exact_allowed: bool = True,
        horizon: timedelta = DEFAULT_HORIZON,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self._on_fire = on_fire
        self._exact_allowed = exact_allowed
        self._horizon = horizon
        self._clock = clock
        self._logger = logger or LOGGER
        self._tasks: dict[str, asyncio.Task] = {}
        self._deadlines: dict[str, datetime] = {}
        self._closed = False

    def set_fire_callback(self, callback: FireCallback) -> None:
        self._on_fire = callback

    @property
    def exact_allowed(self) -> bool:
        return self._exact_allowed

    def set_exact_allowed(self, allowed: bool) -> None:
        self._exact_allowed = allowed

    def armed(self) -> dict[str, datetime]:
        return dict(self._deadlines)

    async def arm(self, timer_id: str, when: datetime, exact: bool = True) -> ArmResult:
        if self._closed:
            raise TimerPortRejected(timer_id, "timer port is shut down")
        when = ensure_utc(when)
        if when - self._clock() > self._horizon:
            raise TimerPortRejected(timer_id, f"{when.isoformat()} is beyond the timer horizon")
        granted_exact = exact and self._exact_allowed
        deadline = when if granted_exact else round_up_to_minute(when)
        self._cancel_task(timer_id)
        task = asyncio.create_task(self._run(timer_id, deadline))
        self._tasks[timer_id] = task
        self._deadlines[timer_id] = deadline
        self._logger.debug(
            "[timers] Armed %s for %s (%s)", timer_id, deadline.isoformat(), "exact" if granted_exact else "inexact"
        )
        return ArmResult(timer_id=timer_id, when=deadline, exact=granted_exact)

    async def cancel(self, timer_id: str) -> None:
        if self._cancel_task(timer_id):
            self._logger.debug("[timers] Cancelled %s", timer_id)

    async def shutdown(self) -> None:
        self._closed = True
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._deadlines.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _cancel_task(self, timer_id: str) -> bool:
        self._deadlines.pop(timer_id, None)
        task = self._tasks.pop(timer_id, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            # Re-arming from inside the firing callback; let it finish.
            return False
        task.cancel()
        return True

    async def _run(self, timer_id: str, deadline: datetime) -> None:
        while True:
            remaining = (deadline - self._clock()).total_seconds()
            if remaining <= 0:
                break
            await asyncio.sleep(min(remaining, MAX_SLEEP_SLICE_SECONDS))
        if self._tasks.get(timer_id) is asyncio.current_task():
            self._tasks.pop(timer_id, None)
            self._deadlines.pop(timer_id, None)
        if self._on_fire is None:
            self._logger.warning("[timers] Timer %s fired with no handler", timer_id)
            return
        try:
            await self._on_fire(timer_id)
        except Exception:
            self._logger.exception("[timers] Timer handler failed for %s", timer_id)
