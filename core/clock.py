"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a unified, testable clock abstraction for the pipeline.

- Moderation, engagement, analytics and performance code
  read time through this clock
- Enables deterministic testing of windows, cooldowns and TTLs
- Provides UTC bucket alignment helpers for analytics

============================================================
DESIGN PRINCIPLES
============================================================
- Single source of truth for pipeline time
- UTC only, stored as NAIVE datetimes (storage layer convention)
- Mockable for testing
- Thread-safe

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
import threading
import time


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_hour(value: datetime) -> datetime:
    """Align a datetime to the start of its UTC hour."""
    return to_naive_utc(value).replace(minute=0, second=0, microsecond=0)


def start_of_day(value: datetime) -> datetime:
    """Align a datetime to UTC midnight."""
    return to_naive_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for pipeline clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime (naive)."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp in seconds."""
        pass


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.

    All times are in UTC.
    """

    def now(self) -> datetime:
        """Get current UTC datetime."""
        return utcnow()

    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        return time.time()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        self._time = to_naive_utc(initial_time) if initial_time else utcnow()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        """Get current (mocked) datetime."""
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        """Get current (mocked) timestamp."""
        with self._lock:
            return self._time.replace(tzinfo=timezone.utc).timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            self._time = to_naive_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)

    @contextmanager
    def freeze(self, at_time: Optional[datetime] = None) -> Generator[None, None, None]:
        """
        Context manager to freeze time.

        Args:
            at_time: Time to freeze at (defaults to current)
        """
        with self._lock:
            original_time = self._time
            if at_time:
                self._time = to_naive_utc(at_time)

        try:
            yield
        finally:
            with self._lock:
                self._time = original_time


# ============================================================
# GLOBAL ACCESS
# ============================================================

_default_clock: ClockProtocol = SystemClock()


def get_clock() -> ClockProtocol:
    """Get the process default clock."""
    return _default_clock
