"""
Clock -- injectable time source.

Responsibility:
    Every timestamp the kernel writes (approval expiry, consumption time,
    ledger ``created_at``, service token issue and expiry) is read from a
    Clock handed in by the caller, never from ``datetime.now()``.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that touches real time.

Audit relevance:
    Approval validity windows are compared against the same clock that
    stamped the request, so tests can pin time and step past an expiry.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_INSTANT = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware ``datetime`` values."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Shared safely between threads in concurrency tests: readers see the
    current instant, and only the test body advances it.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or DEFAULT_TEST_INSTANT

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new instant."""
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_hours(self, hours: float) -> datetime:
        return self.advance(hours * 3600)
