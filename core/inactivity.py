"""Inactivity tracking with escalating check-in levels."""

import logging
import math
from typing import Optional, Sequence

from .config import CHECK_IN_INTERVALS
from .interfaces import Clock
from .models import CheckIn
from .utils import SystemClock

logger = logging.getLogger(__name__)


class InactivityTracker:
    """Counts how many check-in thresholds have passed since the last activity.

    The owner polls it periodically; each poll reports at most one new level,
    and a level is reported once until activity resets the tracker.
    """

    def __init__(self, check_in_intervals: Sequence[float] = CHECK_IN_INTERVALS,
                 enabled: bool = True, clock: Clock = None):
        self.check_in_intervals = tuple(check_in_intervals)
        self.enabled = enabled
        self.clock = clock or SystemClock()
        self.last_activity_time = self.clock.now()
        self.check_in_level = 0

    @property
    def inactive_duration(self) -> float:
        return max(0.0, self.clock.now() - self.last_activity_time)

    @property
    def is_inactive(self) -> bool:
        if not self.check_in_intervals:
            return False
        return self.inactive_duration >= self.check_in_intervals[0]

    def record_activity(self) -> None:
        self.last_activity_time = self.clock.now()
        self.check_in_level = 0

    def poll(self) -> Optional[CheckIn]:
        """Return a CheckIn when a new threshold has been crossed, else None."""
        if not self.enabled:
            return None

        elapsed = self.inactive_duration
        level = sum(1 for interval in self.check_in_intervals if elapsed >= interval)
        if level <= self.check_in_level:
            return None

        self.check_in_level = level
        check_in = CheckIn(level=level, elapsed_seconds=math.floor(elapsed))
        logger.info(f"Inactivity check-in triggered: level {level}, {check_in.elapsed_seconds}s elapsed")
        return check_in
