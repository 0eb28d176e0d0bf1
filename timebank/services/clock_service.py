"""
Clock service.
Supplies the current instant and the user's local calendar date.
"""
import time
from datetime import datetime, date
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """What the ledger needs to know about time"""

    def now(self) -> int:
        """Current instant in epoch milliseconds"""
        ...

    def today_local_date(self) -> str:
        """Current local calendar date as YYYY-MM-DD"""
        ...


class SystemClock:
    """
    Wall clock.

    The day boundary is midnight in the given IANA timezone, or in the
    host's local timezone when none is configured. Never UTC by default.
    """

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = timezone
        self._zone = ZoneInfo(timezone) if timezone else None

    def now(self) -> int:
        return int(time.time() * 1000)

    def local_now(self) -> datetime:
        if self._zone is None:
            return datetime.now()
        return datetime.now(self._zone)

    def today_local_date(self) -> str:
        return format_local_date(self.local_now().date())


def format_local_date(value: date) -> str:
    """Format a date the way snapshots store it (YYYY-MM-DD)"""
    return value.isoformat()


def parse_local_date(value: str) -> date:
    """
    Parse a YYYY-MM-DD string.

    Raises:
        ValueError: If the string is not an ISO date
    """
    return date.fromisoformat(value)


def days_between(earlier: str, later: str) -> int:
    """Whole calendar days from earlier to later (negative if reversed)"""
    return (parse_local_date(later) - parse_local_date(earlier)).days
