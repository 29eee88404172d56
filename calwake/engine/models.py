"""Event instances, scheduled alarms and the persisted schedule snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

from calwake.datetime_utils import ensure_utc, from_epoch_ms, to_epoch_ms

from .errors import StoreCorrupt

NotificationKind = Literal["full-alert", "live-ongoing"]

FULL_ALERT: NotificationKind = "full-alert"
LIVE_ONGOING: NotificationKind = "live-ongoing"
LIVE_NOTIFICATION_ID = "live"

ALARM_TIMER_PREFIX = "alarm:"
LIVE_REFRESH_TIMER_ID = "live-refresh"
ALARM_REFRESH_TIMER_ID = "alarm-refresh"

SNOOZE_PRESETS_MINUTES = (5, 10, 15, 30, 60, 90, 120)

SNAPSHOT_VERSION = 1


def organic_unique_id(event_id: int, trigger_time: datetime) -> str:
    return f"{event_id}_{to_epoch_ms(trigger_time)}"


def snooze_unique_id(event_id: int, trigger_time: datetime) -> str:
    return f"{event_id}_snooze_{to_epoch_ms(trigger_time)}"


def alarm_timer_id(unique_id: str) -> str:
    return f"{ALARM_TIMER_PREFIX}{unique_id}"


def unique_id_from_timer(timer_id: str) -> str | None:
    if not timer_id.startswith(ALARM_TIMER_PREFIX):
        return None
    return timer_id[len(ALARM_TIMER_PREFIX) :] or None


@dataclass(slots=True, frozen=True)
class EventInstance:
    """One occurrence of a calendar event, as returned by an event source."""

    event_id: int
    title: str
    start: datetime
    end: datetime
    color: int = 0
    all_day: bool = False

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


@dataclass(slots=True, frozen=True)
class ScheduledAlarm:
    unique_id: str
    event_id: int
    title: str
    trigger_time: datetime
    end_time: datetime
    is_snoozed: bool = False

    @classmethod
    def for_instance(cls, event: EventInstance) -> ScheduledAlarm:
        return cls(
            unique_id=organic_unique_id(event.event_id, event.start),
            event_id=event.event_id,
            title=event.title,
            trigger_time=ensure_utc(event.start),
            end_time=ensure_utc(event.end),
            is_snoozed=False,
        )

    @classmethod
    def for_snooze(cls, event_id: int, title: str, trigger_time: datetime, end_time: datetime) -> ScheduledAlarm:
        return cls(
            unique_id=snooze_unique_id(event_id, trigger_time),
            event_id=event_id,
            title=title,
            trigger_time=ensure_utc(trigger_time),
            end_time=ensure_utc(end_time),
            is_snoozed=True,
        )

    @property
    def timer_id(self) -> str:
        return alarm_timer_id(self.unique_id)

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "uniqueId": self.unique_id,
            "eventId": self.event_id,
            "title": self.title,
            "triggerTime": to_epoch_ms(self.trigger_time),
            "endTime": to_epoch_ms(self.end_time),
            "isSnoozed": self.is_snoozed,
        }

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.unique_id,
            "event_id": self.event_id,
            "title": self.title,
            "trigger": self.trigger_time.isoformat(),
            "end": self.end_time.isoformat(),
            "snoozed": self.is_snoozed,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ScheduledAlarm:
        return cls(
            unique_id=str(payload["uniqueId"]),
            event_id=int(payload["eventId"]),
            title=str(payload.get("title") or "No Title"),
            trigger_time=from_epoch_ms(int(payload["triggerTime"])),
            end_time=from_epoch_ms(int(payload["endTime"])),
            is_snoozed=bool(payload.get("isSnoozed", False)),
        )


@dataclass(slots=True, frozen=True)
class NotifierSettings:
    notifications_enabled: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True
    sound_uri: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "notificationsEnabled": self.notifications_enabled,
            "soundEnabled": self.sound_enabled,
            "vibrationEnabled": self.vibration_enabled,
            "soundUri": self.sound_uri,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None, defaults: NotifierSettings | None = None) -> NotifierSettings:
        base = defaults or cls()
        if not isinstance(payload, dict):
            return base
        return cls(
            notifications_enabled=bool(payload.get("notificationsEnabled", base.notifications_enabled)),
            sound_enabled=bool(payload.get("soundEnabled", base.sound_enabled)),
            vibration_enabled=bool(payload.get("vibrationEnabled", base.vibration_enabled)),
            sound_uri=payload.get("soundUri", base.sound_uri),
        )


@dataclass(slots=True, frozen=True)
class ScheduleSnapshot:
    """Everything the store persists; always replaced as a whole."""

    armed_ids: frozenset[str] = frozenset()
    alarm_details: tuple[ScheduledAlarm, ...] = ()
    snoozed: tuple[ScheduledAlarm, ...] = ()
    settings: NotifierSettings = field(default_factory=NotifierSettings)

    def find(self, unique_id: str) -> ScheduledAlarm | None:
        for alarm in (*self.alarm_details, *self.snoozed):
            if alarm.unique_id == unique_id:
                return alarm
        return None

    def snoozed_ids(self) -> set[str]:
        return {alarm.unique_id for alarm in self.snoozed}

    def without(self, unique_id: str) -> ScheduleSnapshot:
        return replace(
            self,
            armed_ids=frozenset(self.armed_ids - {unique_id}),
            alarm_details=tuple(a for a in self.alarm_details if a.unique_id != unique_id),
            snoozed=tuple(a for a in self.snoozed if a.unique_id != unique_id),
        )

    def without_armed(self) -> ScheduleSnapshot:
        return replace(self, armed_ids=frozenset())

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "armedUniqueIds": sorted(self.armed_ids),
            "alarmDetails": [alarm.to_json_dict() for alarm in self.alarm_details],
            "snoozedAlarms": [alarm.to_json_dict() for alarm in self.snoozed],
            "settings": self.settings.to_json_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Any, default_settings: NotifierSettings | None = None) -> ScheduleSnapshot:
        if not isinstance(payload, dict):
            raise StoreCorrupt("Schedule snapshot must be a JSON object")
        armed = payload.get("armedUniqueIds", [])
        details = payload.get("alarmDetails", [])
        snoozed = payload.get("snoozedAlarms", [])
        if not isinstance(armed, list) or not isinstance(details, list) or not isinstance(snoozed, list):
            raise StoreCorrupt("Schedule snapshot has malformed collections")
        try:
            return cls(
                armed_ids=frozenset(str(item) for item in armed),
                alarm_details=tuple(ScheduledAlarm.from_dict(item) for item in details),
                snoozed=tuple(ScheduledAlarm.from_dict(item) for item in snoozed),
                settings=NotifierSettings.from_dict(payload.get("settings"), default_settings),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise StoreCorrupt(f"Invalid scheduled alarm record: {exc}") from exc
