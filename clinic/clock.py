# clinic/clock.py
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

# Every timestamp in the system is naive clinic-local wall-clock time.
Clock = Callable[[], datetime]


def clinic_clock(timezone_name: str) -> Clock:
    """Return a clock reading the current time in the clinic's time zone."""
    zone = ZoneInfo(timezone_name)

    def now() -> datetime:
        return datetime.now(zone).replace(tzinfo=None, microsecond=0)

    return now
