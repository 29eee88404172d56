"""
calwake - calendar alarm and live-notification engine

Wakes the host for upcoming calendar events using one-shot timers instead of
polling, and keeps a single "live" notification in step with whatever event is
currently in progress.

Core modules:
- datetime_utils: Instant helpers, day ordinals, local midnight arithmetic
- utils: Environment parsing helpers
- engine: Alarm planner, live refresh planner, persistent store and adapters
"""

__version__ = "0.4.2"
