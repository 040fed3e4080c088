"""
Clock -- injectable time source for approval timestamps.

Responsibility:
    Step activation, decision and notification timestamps come from a
    Clock handed to the WorkflowEngine.  Engines never read time; they are
    given ``now`` as a parameter.

Architecture position:
    Kernel > Domain -- zero I/O except SystemClock, the one place that
    reads the system time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Production clock: current UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock frozen at a start time until moved.

    ``now()`` repeats until ``advance()`` or ``tick()`` moves it forward,
    so every timestamp written by one engine call is equal.
    """

    def __init__(self, start: datetime | None = None):
        self._start = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._start + self._offset

    def advance(self, seconds: int = 1) -> None:
        self._offset += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance(1)
        return self.now()
