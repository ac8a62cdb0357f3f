"""UTC time helpers.

``datetime.utcnow()`` is deprecated since Python 3.12.  These wrappers produce
the naive UTC datetimes the persistence layer stores, and the epoch
millisecond stamps carried by every outbound WebSocket message.
"""

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def epoch_ms() -> int:
    """Current wall-clock time in integer epoch milliseconds."""
    return int(time.time() * 1000)
