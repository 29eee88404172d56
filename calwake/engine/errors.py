"""Failures the engine degrades around instead of crashing."""

from __future__ import annotations


class CalwakeError(Exception):
    """Base class for engine failures."""


class PermissionDenied(CalwakeError):
    """The calendar cannot be read; refreshes no-op until access is granted."""


class ExactTimerUnavailable(CalwakeError):
    """The exact-timer privilege is missing; callers fall back to inexact timers."""


class StoreCorrupt(CalwakeError):
    """Persisted schedule data could not be decoded."""


class TimerPortRejected(CalwakeError):
    """The timer facility refused to arm a timer."""

    def __init__(self, timer_id: str, reason: str) -> None:
        super().__init__(f"Timer {timer_id} rejected: {reason}")
        self.timer_id = timer_id
        self.reason = reason
