"""
Clock -- injectable time source.

Responsibility:
    Gives claims, reschedule proposals, status history and overrides a
    single source of "now" so that no workflow code calls
    ``datetime.now()`` directly.

Architecture position:
    Kernel > Domain -- pure functional core. ``SystemClock`` is the one
    sanctioned I/O boundary for time.

Invariants enforced:
    Claim expiry is cooperative: it is a stored timestamp compared against
    ``clock.now()`` at read time, never a scheduled callback.

Failure modes:
    (none)
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock via constructor injection. ``now()``
        returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock returning actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    DEFAULT_START = datetime(2024, 6, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        if time.tzinfo is None:
            time = time.replace(tzinfo=timezone.utc)
        self._current = time

    def advance(self, seconds: float = 1, *, minutes: float = 0) -> datetime:
        """Advance the clock and return the new time."""
        self._current = self._current + timedelta(seconds=seconds, minutes=minutes)
        return self._current

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        return self.advance(1)
