"""Utility functions for the tutoring policy engine."""

import time
from datetime import datetime

from .interfaces import Clock


class SystemClock(Clock):
    """Clock backed by time.monotonic."""

    def now(self) -> float:
        return time.monotonic()


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a value into [low, high]."""
    return max(low, min(high, value))


def parse_timestamp(value) -> datetime:
    """Revive a serialized timestamp (ISO string, epoch seconds or datetime)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    return datetime.fromisoformat(value)
