"""Shared test fixtures for the calwake test suite.

Provides in-memory fakes for the three engine ports (event source, timers,
notifications) plus store and configuration fixtures.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from unittest.mock import Mock

import paho.mqtt.client as mqtt
import pytest

from calwake.engine.config import MqttConfig
from calwake.engine.errors import ExactTimerUnavailable, PermissionDenied, TimerPortRejected
from calwake.engine.models import EventInstance, NotifierSettings
from calwake.engine.ports import ArmResult
from calwake.engine.store import ScheduleStore

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def mock_logger():
    return Mock(spec=logging.Logger)


# ============================================================================
# Port Fakes
# ============================================================================


class FakeEventSource:
    """Returns the configured instances that overlap the queried range."""

    def __init__(self, events: list[EventInstance] | None = None) -> None:
        self.events: list[EventInstance] = list(events or [])
        self.denied = False
        self.queries: list[tuple[datetime, datetime]] = []

    async def query(self, range_start: datetime, range_end: datetime) -> list[EventInstance]:
        self.queries.append((range_start, range_end))
        if self.denied:
            raise PermissionDenied("calendar access revoked")
        hits = [event for event in self.events if event.end >= range_start and event.start <= range_end]
        return sorted(hits, key=lambda event: event.start)


class FakeTimerPort:
    """Records arm/cancel calls; can refuse exact timers or specific ids."""

    def __init__(self) -> None:
        self.armed: dict[str, datetime] = {}
        self.exact: dict[str, bool] = {}
        self.arm_calls: list[tuple[str, datetime, bool]] = []
        self.cancel_calls: list[str] = []
        self.exact_allowed = True
        self.reject_ids: set[str] = set()

    async def arm(self, timer_id: str, when: datetime, exact: bool = True) -> ArmResult:
        self.arm_calls.append((timer_id, when, exact))
        if timer_id in self.reject_ids:
            raise TimerPortRejected(timer_id, "rejected by test")
        if exact and not self.exact_allowed:
            raise ExactTimerUnavailable(timer_id)
        self.armed[timer_id] = when
        self.exact[timer_id] = exact
        return ArmResult(timer_id=timer_id, when=when, exact=exact)

    async def cancel(self, timer_id: str) -> None:
        self.cancel_calls.append(timer_id)
        self.armed.pop(timer_id, None)
        self.exact.pop(timer_id, None)

    def alarm_ids(self) -> set[str]:
        return {timer_id for timer_id in self.armed if timer_id.startswith("alarm:")}


class FakeNotificationPort:
    def __init__(self) -> None:
        self.shown: list[tuple[str, dict[str, Any]]] = []
        self.cancelled: list[tuple[str, str]] = []

    async def show(self, kind: str, payload: dict[str, Any]) -> None:
        self.shown.append((kind, payload))

    async def cancel(self, kind: str, notification_id: str) -> None:
        self.cancelled.append((kind, notification_id))


@pytest.fixture
def source() -> FakeEventSource:
    return FakeEventSource()


@pytest.fixture
def timers() -> FakeTimerPort:
    return FakeTimerPort()


@pytest.fixture
def notifications() -> FakeNotificationPort:
    return FakeNotificationPort()


@pytest.fixture
def store(tmp_path) -> ScheduleStore:
    return ScheduleStore(tmp_path / "schedule.json", default_settings=NotifierSettings())


@pytest.fixture
def now() -> datetime:
    """Fixed reference instant (2025-01-15 14:30:00 UTC)."""
    return datetime(2025, 1, 15, 14, 30, 0, tzinfo=UTC)


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    return MqttConfig(
        host="localhost",
        port=1883,
        username=None,
        password=None,
        tls_enabled=False,
        cert=None,
        key=None,
        ca_cert=None,
        topic_base="calwake/test-host",
    )


@pytest.fixture
def mock_mqtt_client():
    """Mock paho client whose publish() returns a successful MQTTMessageInfo."""
    client = Mock(spec=mqtt.Client)
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.is_connected = Mock(return_value=True)
    return client
