"""Tests for calwake.engine.timers.AsyncioTimerPort."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from calwake.datetime_utils import utc_now
from calwake.engine.errors import TimerPortRejected
from calwake.engine.timers import AsyncioTimerPort, round_up_to_minute

pytestmark = pytest.mark.anyio


class TestRoundUpToMinute:
    def test_rounds_partial_minutes_up(self):
        assert round_up_to_minute(datetime(2025, 1, 15, 12, 0, 30, tzinfo=UTC)) == datetime(
            2025, 1, 15, 12, 1, tzinfo=UTC
        )

    def test_whole_minute_unchanged(self):
        when = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        assert round_up_to_minute(when) == when


class TestAsyncioTimerPort:
    async def test_fires_callback_with_timer_id(self):
        fired: list[str] = []
        done = asyncio.Event()

        async def on_fire(timer_id: str) -> None:
            fired.append(timer_id)
            done.set()

        port = AsyncioTimerPort(on_fire=on_fire)
        result = await port.arm("alarm:1_2", utc_now() + timedelta(milliseconds=50))

        await asyncio.wait_for(done.wait(), timeout=2)
        assert fired == ["alarm:1_2"]
        assert result.exact is True
        assert port.armed() == {}

    async def test_overdue_timer_fires_immediately(self):
        done = asyncio.Event()

        async def on_fire(timer_id: str) -> None:
            done.set()

        port = AsyncioTimerPort(on_fire=on_fire)
        await port.arm("live-refresh", utc_now() - timedelta(minutes=5))

        await asyncio.wait_for(done.wait(), timeout=2)

    async def test_rearming_replaces_previous_timer(self):
        fired: list[str] = []

        async def on_fire(timer_id: str) -> None:
            fired.append(timer_id)

        port = AsyncioTimerPort(on_fire=on_fire)
        await port.arm("live-refresh", utc_now() + timedelta(milliseconds=50))
        await port.arm("live-refresh", utc_now() + timedelta(milliseconds=100))

        await asyncio.sleep(0.3)
        assert fired == ["live-refresh"]

    async def test_cancel_prevents_fire(self):
        fired: list[str] = []

        async def on_fire(timer_id: str) -> None:
            fired.append(timer_id)

        port = AsyncioTimerPort(on_fire=on_fire)
        await port.arm("alarm:1_2", utc_now() + timedelta(milliseconds=50))
        await port.cancel("alarm:1_2")

        await asyncio.sleep(0.2)
        assert fired == []
        assert port.armed() == {}

    async def test_rearm_from_inside_callback_survives(self):
        port = AsyncioTimerPort()
        calls: list[str] = []
        target = utc_now() + timedelta(hours=1)

        async def on_fire(timer_id: str) -> None:
            calls.append(timer_id)
            await port.arm(timer_id, target)

        port.set_fire_callback(on_fire)
        await port.arm("alarm-refresh", utc_now())
        await asyncio.sleep(0.05)

        assert calls == ["alarm-refresh"]
        assert port.armed() == {"alarm-refresh": target}
        await port.shutdown()

    async def test_inexact_when_privilege_missing(self):
        fixed = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
        port = AsyncioTimerPort(exact_allowed=False, clock=lambda: fixed)

        result = await port.arm("alarm:1_2", fixed + timedelta(minutes=5, seconds=30))

        assert result.exact is False
        assert result.when == fixed + timedelta(minutes=6)
        await port.shutdown()

    async def test_beyond_horizon_is_rejected(self):
        port = AsyncioTimerPort(horizon=timedelta(days=1))

        with pytest.raises(TimerPortRejected):
            await port.arm("live-refresh", utc_now() + timedelta(days=2))

    async def test_shutdown_rejects_new_timers(self):
        port = AsyncioTimerPort()
        await port.arm("live-refresh", utc_now() + timedelta(hours=1))

        await port.shutdown()

        assert port.armed() == {}
        with pytest.raises(TimerPortRejected):
            await port.arm("live-refresh", utc_now() + timedelta(hours=1))

    async def test_handler_errors_are_logged(self, mock_logger):
        done = asyncio.Event()

        async def on_fire(timer_id: str) -> None:
            done.set()
            raise RuntimeError("boom")

        port = AsyncioTimerPort(on_fire=on_fire, logger=mock_logger)
        await port.arm("alarm:1_2", utc_now())
        await asyncio.wait_for(done.wait(), timeout=2)
        await asyncio.sleep(0)

        mock_logger.exception.assert_called_once()
