"""Configuration helpers for the calwake notifier."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta, tzinfo
from pathlib import Path

from calwake.datetime_utils import resolve_timezone
from calwake.utils import default_hostname, parse_bool, parse_float, parse_int, sanitize_topic_segment, split_csv

from .models import NotifierSettings

DEFAULT_STORAGE_PATH = Path("~/.local/state/calwake/schedule.json")


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _normalize_calendar_url(value: str | None) -> str | None:
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    lowered = trimmed.lower()
    if lowered.startswith("webcal://"):
        trimmed = "https://" + trimmed[9:]
    return trimmed


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class CalendarConfig:
    feeds: tuple[str, ...]
    request_timeout: float

    @property
    def enabled(self) -> bool:
        return bool(self.feeds)


@dataclass(frozen=True)
class ScheduleConfig:
    storage_path: Path
    timezone_name: str | None
    alarm_window_hours: int
    live_window_days: int
    refresh_minutes: int
    exact_timers: bool

    @property
    def timezone(self) -> tzinfo | None:
        return resolve_timezone(self.timezone_name)

    @property
    def alarm_window(self) -> timedelta:
        return timedelta(hours=self.alarm_window_hours)

    @property
    def live_window(self) -> timedelta:
        return timedelta(days=self.live_window_days)

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(minutes=self.refresh_minutes)


@dataclass(frozen=True)
class NotifierConfig:
    hostname: str
    schedule: ScheduleConfig
    calendar: CalendarConfig
    mqtt: MqttConfig
    default_settings: NotifierSettings

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> NotifierConfig:
        source = env if env is not None else os.environ
        hostname = source.get("CALWAKE_HOSTNAME") or default_hostname()

        storage_raw = _strip_or_none(source.get("CALWAKE_STORAGE_PATH"))
        storage_path = Path(storage_raw) if storage_raw else DEFAULT_STORAGE_PATH
        schedule = ScheduleConfig(
            storage_path=storage_path.expanduser(),
            timezone_name=_strip_or_none(source.get("CALWAKE_TIMEZONE")),
            alarm_window_hours=max(1, parse_int(source.get("CALWAKE_ALARM_WINDOW_HOURS"), 24)),
            live_window_days=max(1, parse_int(source.get("CALWAKE_LIVE_WINDOW_DAYS"), 30)),
            refresh_minutes=max(1, parse_int(source.get("CALWAKE_REFRESH_MINUTES"), 15)),
            exact_timers=parse_bool(source.get("CALWAKE_EXACT_TIMERS"), True),
        )

        feeds: tuple[str, ...] = tuple(
            normalized
            for normalized in (_normalize_calendar_url(url) for url in split_csv(source.get("CALWAKE_CALENDAR_FEEDS")))
            if normalized
        )
        calendar = CalendarConfig(
            feeds=feeds,
            request_timeout=max(1.0, parse_float(source.get("CALWAKE_CALENDAR_TIMEOUT"), 20.0)),
        )

        mqtt = MqttConfig(
            host=_strip_or_none(source.get("CALWAKE_MQTT_HOST")),
            port=parse_int(source.get("CALWAKE_MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("CALWAKE_MQTT_USER")),
            password=_strip_or_none(source.get("CALWAKE_MQTT_PASS")),
            tls_enabled=parse_bool(source.get("CALWAKE_MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("CALWAKE_MQTT_CERT")),
            key=_strip_or_none(source.get("CALWAKE_MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("CALWAKE_MQTT_CA_CERT")),
            topic_base=_strip_or_none(source.get("CALWAKE_MQTT_TOPIC_BASE"))
            or f"calwake/{sanitize_topic_segment(hostname)}",
        )

        default_settings = NotifierSettings(
            notifications_enabled=parse_bool(source.get("CALWAKE_NOTIFICATIONS_ENABLED"), True),
            sound_enabled=parse_bool(source.get("CALWAKE_SOUND_ENABLED"), True),
            vibration_enabled=parse_bool(source.get("CALWAKE_VIBRATION_ENABLED"), True),
            sound_uri=_strip_or_none(source.get("CALWAKE_SOUND_URI")),
        )

        return NotifierConfig(
            hostname=hostname,
            schedule=schedule,
            calendar=calendar,
            mqtt=mqtt,
            default_settings=default_settings,
        )
