"""Tests for calwake.engine.live_refresh."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from calwake.engine.live_refresh import LiveRefreshPlanner, choose_display_event
from calwake.engine.models import LIVE_NOTIFICATION_ID, LIVE_ONGOING, LIVE_REFRESH_TIMER_ID, EventInstance

pytestmark = pytest.mark.anyio

LOS_ANGELES = ZoneInfo("America/Los_Angeles")


def _timed(start: datetime, minutes: int, event_id: int, title: str = "Event") -> EventInstance:
    return EventInstance(event_id=event_id, title=title, start=start, end=start + timedelta(minutes=minutes))


def _all_day(start: datetime, event_id: int = 100, title: str = "Holiday") -> EventInstance:
    return EventInstance(event_id=event_id, title=title, start=start, end=start + timedelta(days=1), all_day=True)


@pytest.fixture
def live(source, timers, notifications, mock_logger):
    return LiveRefreshPlanner(source=source, timers=timers, notifications=notifications, tz=UTC, logger=mock_logger)


class TestChooseDisplayEvent:
    def test_empty(self):
        assert choose_display_event([]) is None

    def test_shortest_timed_event_wins(self, now):
        long = _timed(now - timedelta(minutes=10), 90, event_id=1, title="Workshop")
        short = _timed(now - timedelta(minutes=10), 30, event_id=2, title="Sync")
        assert choose_display_event([long, short]) is short

    def test_timed_beats_all_day(self, now):
        holiday = _all_day(datetime(2025, 1, 15, tzinfo=UTC))
        meeting = _timed(now - timedelta(minutes=5), 240, event_id=3)
        assert choose_display_event([holiday, meeting]) is meeting


class TestLiveRefresh:
    async def test_overlapping_events_show_shorter_and_wake_at_its_end(self, live, source, timers, notifications, now):
        long = _timed(now - timedelta(minutes=10), 90, event_id=1, title="Workshop")
        short = _timed(now - timedelta(minutes=10), 30, event_id=2, title="Sync")
        source.events = [long, short]

        plan = await live.refresh(now)

        assert plan.display == short
        assert plan.next_wake == short.end
        kind, payload = notifications.shown[-1]
        assert kind == LIVE_ONGOING
        assert payload["title"] == "Sync"
        assert timers.armed[LIVE_REFRESH_TIMER_ID] == short.end
        assert timers.exact[LIVE_REFRESH_TIMER_ID] is True

    async def test_empty_calendar_still_rearms_at_window_end(self, live, timers, notifications, now):
        plan = await live.refresh(now)

        assert plan.display is None
        assert plan.next_wake == now + timedelta(days=30)
        assert timers.armed[LIVE_REFRESH_TIMER_ID] == now + timedelta(days=30)
        assert timers.exact[LIVE_REFRESH_TIMER_ID] is True
        assert notifications.cancelled == [(LIVE_ONGOING, LIVE_NOTIFICATION_ID)]

    async def test_next_start_beats_display_end(self, live, source, timers, now):
        current = _timed(now - timedelta(minutes=10), 60, event_id=1)
        upcoming = _timed(now + timedelta(minutes=20), 30, event_id=2)
        source.events = [current, upcoming]

        plan = await live.refresh(now)

        assert plan.display == current
        assert plan.next_wake == upcoming.start

    async def test_all_day_display_wakes_at_local_midnight(self, source, timers, notifications, now):
        planner = LiveRefreshPlanner(source=source, timers=timers, notifications=notifications, tz=LOS_ANGELES)
        holiday = _all_day(datetime(2025, 1, 15, tzinfo=UTC))
        source.events = [holiday]
        # 10:00 PST on the 15th.
        at = datetime(2025, 1, 15, 18, 0, tzinfo=UTC)

        plan = await planner.refresh(at)

        assert plan.display == holiday
        # Midnight PST, not the stored 00:00 UTC boundary.
        assert plan.next_wake == datetime(2025, 1, 16, 8, 0, tzinfo=UTC)
        assert notifications.shown[-1][1]["time_text"] == "All Day"

    async def test_upcoming_all_day_wakes_at_its_local_start(self, source, timers, notifications):
        planner = LiveRefreshPlanner(source=source, timers=timers, notifications=notifications, tz=LOS_ANGELES)
        holiday = _all_day(datetime(2025, 1, 16, tzinfo=UTC))
        source.events = [holiday]
        # 19:00 PST on the 15th: the UTC boundary has passed, local midnight has not.
        at = datetime(2025, 1, 16, 3, 0, tzinfo=UTC)

        plan = await planner.refresh(at)

        assert plan.display is None
        assert plan.next_wake == datetime(2025, 1, 16, 8, 0, tzinfo=UTC)

    async def test_permission_denied_arms_nothing(self, live, source, timers, notifications, now):
        source.denied = True

        plan = await live.refresh(now)

        assert plan.display is None
        assert plan.next_wake is None
        assert timers.arm_calls == []
        assert notifications.shown == [] and notifications.cancelled == []

    async def test_inexact_fallback_is_reported(self, live, timers, now):
        timers.exact_allowed = False

        plan = await live.refresh(now)

        assert plan.exact is False
        assert timers.exact[LIVE_REFRESH_TIMER_ID] is False

    async def test_today_lists_agenda(self, live, source, now):
        morning = _timed(now.replace(hour=9, minute=0), 30, event_id=1)
        tomorrow = _timed(now + timedelta(days=1), 30, event_id=2)
        source.events = [morning, tomorrow]

        plan = await live.refresh(now)

        # The morning event already ended, so the source does not return it for [now, +30d].
        assert [event.event_id for event in plan.today] == []
        assert plan.display is None
        assert plan.next_wake == tomorrow.start

    def test_plan_today_includes_earlier_events(self, live, now):
        morning = _timed(now.replace(hour=9, minute=0), 30, event_id=1)
        evening = _timed(now.replace(hour=20, minute=0), 30, event_id=3)
        tomorrow = _timed(now + timedelta(days=1), 30, event_id=2)

        plan = live.plan(now, [morning, evening, tomorrow])

        assert [event.event_id for event in plan.today] == [1, 3]
