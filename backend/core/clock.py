"""Time source abstraction so cache freshness can be tested across day rollover."""
from datetime import UTC, date, datetime


class Clock:
    """Wall clock in UTC, the reference timezone for snapshot dates."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """Clock pinned to a settable instant."""

    def __init__(self, instant: datetime) -> None:
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = instant


system_clock = Clock()
