"""
Clock -- injectable time source.

Responsibility:
    Lifecycle managers stamp stage transitions, reservations, receipts and
    approval SLA deadlines from an injected clock rather than calling
    ``datetime.now()`` themselves.

Architecture position:
    Kernel > Domain -- pure, zero I/O except ``SystemClock``.

Audit relevance:
    SLA escalation and stage-duration reporting are only reproducible in tests
    when every timestamp flows from a controllable clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Production clock returning wall time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` is stable between calls until ``advance()`` or ``set_time()``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: float = 0, *, hours: float = 0) -> datetime:
        """Move the clock forward and return the new time."""
        self._current = self._current + timedelta(seconds=seconds, hours=hours)
        return self._current
