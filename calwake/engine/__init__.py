"""
Alarm scheduling and live-notification refresh engine

This package decides which calendar instances need a wake-up, keeps a durable
record of the timers it believes are armed, and drives a single chained timer
that keeps the "live" notification in step with the current event:

- Planning: AlarmPlanner (per-instance alarms, snoozes) and LiveRefreshPlanner
- Classification: timezone-safe "is this event active" checks
- Persistence: whole-snapshot JSON store that survives restarts
- Triggers: one dispatcher that routes boot, timer, permission and user actions
- Adapters: ICS/WebCal event source, asyncio timers, MQTT notifications

Key modules:
- config: Configuration management from environment variables
- models: Event instances, scheduled alarms and snapshots
- alarm_planner: Alarm refresh, snooze and cancel
- live_refresh: Live notification refresh chain
- triggers: Trigger types and dispatcher
"""

from __future__ import annotations

__all__ = [
    "alarm_planner",
    "classifier",
    "config",
    "errors",
    "ics_source",
    "live_refresh",
    "models",
    "mqtt",
    "notifications",
    "ports",
    "store",
    "timers",
    "triggers",
]
