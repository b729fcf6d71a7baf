"""
Clock helpers. Timestamps are stored as naive UTC.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching what the store returns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed from start to end, floored at zero."""
    return max(0, int((end - start).total_seconds() // 60))
