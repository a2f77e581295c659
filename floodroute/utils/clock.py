"""
Time helpers shared by the caches.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Naive UTC timestamp, the representation stored in SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
