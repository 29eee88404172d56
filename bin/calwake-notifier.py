#!/usr/bin/env python3
"""Calwake notifier daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from calwake.engine.alarm_planner import AlarmPlanner
from calwake.engine.config import NotifierConfig
from calwake.engine.ics_source import IcsEventSource
from calwake.engine.live_refresh import LiveRefreshPlanner
from calwake.engine.mqtt import NotifierMqtt
from calwake.engine.notifications import MqttNotificationPort
from calwake.engine.store import ScheduleStore
from calwake.engine.timers import AsyncioTimerPort
from calwake.engine.triggers import BootCompleted, CalendarChanged, TriggerDispatcher

LOGGER = logging.getLogger("calwake.notifier")


class CalwakeNotifier:
    """Wire the scheduling engine to ICS feeds, asyncio timers and MQTT."""

    def __init__(self, config: NotifierConfig) -> None:
        self.config = config
        tz = config.schedule.timezone
        self.store = ScheduleStore(config.schedule.storage_path, default_settings=config.default_settings)
        self.source = IcsEventSource(config=config.calendar, local_tz=tz)
        self.timers = AsyncioTimerPort(exact_allowed=config.schedule.exact_timers)
        self.mqtt = NotifierMqtt(config.mqtt)
        self.notifications = MqttNotificationPort(self.mqtt, config.mqtt.topic_base, tz=tz)
        self.alarms = AlarmPlanner(
            source=self.source,
            timers=self.timers,
            notifications=self.notifications,
            store=self.store,
            window=config.schedule.alarm_window,
            tz=tz,
        )
        self.live = LiveRefreshPlanner(
            source=self.source,
            timers=self.timers,
            notifications=self.notifications,
            window=config.schedule.live_window,
            tz=tz,
        )
        self.dispatcher = TriggerDispatcher(
            alarms=self.alarms,
            live=self.live,
            store=self.store,
            timers=self.timers,
            notifications=self.notifications,
            refresh_interval=config.schedule.refresh_interval,
            on_state_changed=self.notifications.publish_state,
        )
        self.timers.set_fire_callback(self.dispatcher.timer_fired)
        self._poll_task: asyncio.Task | None = None

    async def run(self) -> None:
        if not self.config.calendar.enabled:
            LOGGER.warning("No calendar feeds configured (CALWAKE_CALENDAR_FEEDS); nothing will be scheduled")
        self.mqtt.connect()
        self.notifications.listen(self.dispatcher.handle, asyncio.get_running_loop())
        # Asyncio timers died with the previous process, so every start is a boot.
        await self.dispatcher.dispatch(BootCompleted())
        self._poll_task = asyncio.create_task(self._poll_feeds())
        await self._poll_task

    async def _poll_feeds(self) -> None:
        interval = self.config.schedule.refresh_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                changed = await self.source.poll()
            except Exception:
                LOGGER.exception("Calendar poll failed")
                continue
            if changed:
                LOGGER.info("Calendar feed changed; refreshing schedule")
                self.dispatcher.dispatch(CalendarChanged())

    async def shutdown(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
        await self.dispatcher.wait_idle()
        await self.timers.shutdown()
        await self.source.close()
        self.mqtt.disconnect()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Calendar alarm and live notification daemon")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = NotifierConfig.from_env()
    notifier = CalwakeNotifier(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(notifier.run())
    await stop_event.wait()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task
    await notifier.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
