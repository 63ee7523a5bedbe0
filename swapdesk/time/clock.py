"""
Time abstraction layer for SwapDesk.

Provides an injectable clock that can be:
- Real-time (service process)
- Manual (tests that need deterministic timestamps)

Every persisted timestamp and every published StatusEvent reads time
through a Clock, never through datetime.now() directly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from typing import Optional


class Clock(ABC):
    """Abstract clock interface"""

    @abstractmethod
    def now(self) -> datetime:
        """Get current time (always UTC, timezone-aware)"""
        pass


class RealTimeClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start_time: Optional[datetime] = None):
        """
        Args:
            start_time: Initial time (must be timezone-aware). Defaults to now.
        """
        if start_time is None:
            start_time = datetime.now(timezone.utc)
        if start_time.tzinfo is None:
            raise ValueError("start_time must be timezone-aware (UTC)")

        self._current_time = start_time.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta) -> None:
        """Advance time by delta."""
        self._current_time += delta

    def set_time(self, new_time: datetime) -> None:
        if new_time.tzinfo is None:
            raise ValueError("new_time must be timezone-aware (UTC)")
        self._current_time = new_time.astimezone(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure *dt* is timezone-aware and in UTC.

    - If naive (no tzinfo): attach UTC (assumes caller meant UTC).
    - If aware but not UTC: convert to UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
