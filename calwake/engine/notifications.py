"""MQTT-backed notification port and command listener.

Notifications are retained JSON documents so a display that connects late
still sees the current alert and live card. Cancelling publishes an empty
retained payload, which clears the topic on the broker.

Commands arrive on ``<base>/notifications/command``:

    {"action": "snooze", "event_id": 42, "title": "Standup", "end": "...", "minutes": 10}
    {"action": "dismiss", "unique_id": "42_1700000000000"}
    {"action": "refresh"}
    {"action": "notifications", "enabled": false}
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime, tzinfo
from typing import Any

from calwake.datetime_utils import ensure_utc, format_time_range, from_epoch_ms, utc_now

from .live_refresh import LivePlan
from .models import FULL_ALERT, LIVE_ONGOING, SNOOZE_PRESETS_MINUTES, NotificationKind, ScheduledAlarm
from .mqtt import NotifierMqtt
from .triggers import CalendarChanged, NotificationsToggled, Trigger, UserDismissed, UserSnoozed

LOGGER = logging.getLogger("calwake.notifications")

DEFAULT_SNOOZE_MINUTES = SNOOZE_PRESETS_MINUTES[0]


def _parse_instant(value: Any) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_ms(int(value))
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip()))
        except ValueError:
            return None
    return None


def parse_command(payload: str, logger: logging.Logger | None = None) -> Trigger | None:
    """Translate a command message into a trigger; malformed input yields ``None``."""
    log = logger or LOGGER
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        log.debug("[notifications] Ignoring malformed command: %s", payload)
        return None
    if not isinstance(data, dict):
        log.debug("[notifications] Ignoring non-object command: %s", payload)
        return None
    action = str(data.get("action") or "").strip().lower()

    if action == "snooze":
        try:
            event_id = int(data["event_id"])
            minutes = int(data.get("minutes") or DEFAULT_SNOOZE_MINUTES)
        except (KeyError, TypeError, ValueError):
            log.warning("[notifications] Snooze command missing a valid event_id/minutes: %s", payload)
            return None
        if minutes <= 0:
            log.warning("[notifications] Snooze minutes must be positive: %s", minutes)
            return None
        end_time = _parse_instant(data.get("end")) or utc_now()
        title = str(data.get("title") or "No Title")
        return UserSnoozed(event_id=event_id, title=title, end_time=end_time, minutes=minutes)
    if action == "dismiss":
        unique_id = str(data.get("unique_id") or "").strip()
        if not unique_id:
            log.warning("[notifications] Dismiss command without unique_id")
            return None
        return UserDismissed(unique_id=unique_id)
    if action == "refresh":
        return CalendarChanged()
    if action == "notifications":
        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            log.warning("[notifications] Notifications command needs a boolean 'enabled'")
            return None
        return NotificationsToggled(enabled=enabled)
    log.debug("[notifications] Unknown command action '%s'", action)
    return None


def _event_summary(event, tz: tzinfo | None) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "title": event.title,
        "start": event.start.isoformat(),
        "end": event.end.isoformat(),
        "all_day": event.all_day,
        "color": event.color,
        "time_text": format_time_range(event.start, event.end, event.all_day, tz),
    }


class MqttNotificationPort:
    """Notification port that publishes alerts and the live card over MQTT."""

    def __init__(
        self,
        mqtt: NotifierMqtt,
        topic_base: str,
        tz: tzinfo | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._mqtt = mqtt
        self._tz = tz
        self._logger = logger or LOGGER
        self._alert_topic_prefix = f"{topic_base}/notifications/full_alert"
        self._live_topic = f"{topic_base}/notifications/live"
        self._command_topic = f"{topic_base}/notifications/command"
        self._alarms_state_topic = f"{topic_base}/alarms/state"
        self._agenda_topic = f"{topic_base}/agenda/today"
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def command_topic(self) -> str:
        return self._command_topic

    def topic_for(self, kind: NotificationKind, notification_id: str) -> str:
        if kind == FULL_ALERT:
            return f"{self._alert_topic_prefix}/{notification_id}"
        if kind == LIVE_ONGOING:
            return self._live_topic
        raise ValueError(f"Unknown notification kind: {kind}")

    async def show(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        topic = self.topic_for(kind, str(payload.get("id", "")))
        self._publish(topic, json.dumps(payload), label=f"{kind} '{payload.get('title', '')}'")

    async def cancel(self, kind: NotificationKind, notification_id: str) -> None:
        self._publish(self.topic_for(kind, notification_id), "", label=f"cancel {kind} {notification_id}")

    async def publish_state(self, alarms: list[ScheduledAlarm], live: LivePlan | None) -> None:
        """Publish the scheduled alarm list and today's agenda."""
        self._publish(
            self._alarms_state_topic,
            json.dumps({"alarms": [alarm.to_public_dict() for alarm in alarms], "updated_at": utc_now().isoformat()}),
            label="alarm state",
        )
        if live is None:
            return
        agenda = {
            "display": _event_summary(live.display, self._tz) if live.display else None,
            "events": [_event_summary(event, self._tz) for event in live.today],
            "next_refresh": live.next_wake.isoformat() if live.next_wake else None,
        }
        self._publish(self._agenda_topic, json.dumps(agenda), label="agenda")

    def listen(
        self,
        handle: Callable[[Trigger], Coroutine[Any, Any, None]],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        """Subscribe to the command topic; triggers are handled on ``loop``."""
        self._loop = loop

        def _on_message(payload: str) -> None:
            trigger = parse_command(payload, self._logger)
            if trigger is None or self._loop is None:
                return
            asyncio.run_coroutine_threadsafe(handle(trigger), self._loop)

        self._mqtt.subscribe(self._command_topic, _on_message)

    def _publish(self, topic: str, message: str, *, label: str) -> None:
        if not self._mqtt.publish(topic, message, retain=True, qos=1):
            self._logger.info("[notifications] MQTT unavailable; %s not delivered (%s)", label, topic)
            return
        self._logger.debug("[notifications] Published %s to %s", label, topic)
