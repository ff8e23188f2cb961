"""
vstore/clock.py -- Time sources for post modification stamps.

The reverter never reads the wall clock directly; it asks a clock object
for the local and UTC "now".  Tests pass a ``FixedClock``.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol

MYSQL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class Clock(Protocol):
    def now_local(self) -> datetime: ...

    def now_utc(self) -> datetime: ...


class SystemClock:
    """Reads the current time from the operating system."""

    def now_local(self) -> datetime:
        return datetime.now().astimezone()

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Always returns the same instant.

    Parameters
    ----------
    utc : datetime
        The instant to report.  Naive values are taken as UTC.
    local_offset_hours : float
        Offset applied to produce the local time (default ``0``).
    """

    def __init__(self, utc: datetime, local_offset_hours: float = 0):
        if utc.tzinfo is None:
            utc = utc.replace(tzinfo=timezone.utc)
        self._utc = utc.astimezone(timezone.utc)
        self._local = self._utc.astimezone(timezone(timedelta(hours=local_offset_hours)))

    def now_local(self) -> datetime:
        return self._local

    def now_utc(self) -> datetime:
        return self._utc


def format_timestamp(value: datetime) -> str:
    """Format *value* the way the relational mirror stores dates."""
    return value.strftime(MYSQL_DATETIME_FORMAT)
