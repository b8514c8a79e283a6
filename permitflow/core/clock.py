"""Clock abstraction so the core never reads the wall clock directly."""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Naive UTC wall clock, matching the naive UTC columns in the store."""
    
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """Clock pinned to a given instant. Used by tests and replayed sweeps."""
    
    def __init__(self, instant: datetime):
        self._instant = instant
    
    def now(self) -> datetime:
        return self._instant
    
    def set(self, instant: datetime) -> None:
        self._instant = instant
