"""
Injectable clock.

Services never read the wall clock directly; they take a ``clock`` with a
``now()`` method so tests can pin submitted_at / reviewed_at / completed_at.

Usage:
    from pms.utils.clock import SystemClock, FixedClock

    clock = FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
    clock.advance(minutes=5)
"""

from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall clock, timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, instant: datetime | None = None):
        self._now = instant or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now
