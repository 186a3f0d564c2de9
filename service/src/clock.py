"""Session-relative time origin"""

from typing import Optional

NANOS_PER_MILLI = 1_000_000.0


class ClockBaseline:
    """Fixes the session origin to the first timestamp it observes.

    Timestamps are monotonic nanoseconds; offsets are reported in milliseconds.
    """

    def __init__(self):
        self.baseline: Optional[int] = None

    def observe(self, timestamp: int) -> None:
        """Record ``timestamp`` as the origin if none is set yet."""
        if self.baseline is None:
            self.baseline = timestamp

    def offset_ms(self, timestamp: int) -> float:
        """Milliseconds elapsed between the origin and ``timestamp``."""
        self.observe(timestamp)
        return (timestamp - self.baseline) / NANOS_PER_MILLI

    def reset(self) -> None:
        self.baseline = None
