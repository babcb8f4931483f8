"""
Injected time source.

Status derivation, enforcement and reconstruction all compare against "now";
services take a clock instead of reading the wall clock so tests can pin time.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to timezone-aware UTC. Naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, instant: datetime):
        self.instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = ensure_utc(instant)


system_clock = SystemClock()


def utcnow() -> datetime:
    """Column default for rows written outside a service call."""
    return system_clock.now()
