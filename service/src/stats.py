"""Running counters and latency percentiles for ingested spans"""

import logging
import math
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from .models import Counts, LatencyStats, SpanStatus

logger = logging.getLogger(__name__)


def percentile(sorted_samples: Sequence[float], p: float) -> float:
    """Linear-interpolation percentile over an ascending sample list.

    Same method as NumPy's default ("R-7"): the rank ``(p/100) * (n-1)`` is
    split into an integer part selecting the lower order statistic and a
    fractional part interpolating towards the next one.

    Parameters
    ----------
    sorted_samples : Sequence[float]
        Samples sorted ascending.
    p : float
        Requested percentile in [0, 100].

    Returns
    -------
    float
        0.0 for an empty list, the single value for one sample.
    """
    n = len(sorted_samples)
    if n == 0:
        return 0.0
    if n == 1:
        return float(sorted_samples[0])

    idx = (p / 100.0) * (n - 1)
    base = math.floor(idx)
    lower = sorted_samples[base]
    upper = sorted_samples[min(base + 1, n - 1)]
    fraction = idx - base
    return lower + (upper - lower) * fraction


def summarize(samples: Sequence[float]) -> LatencyStats:
    """Build a LatencyStats from unsorted samples."""
    if not samples:
        return LatencyStats()

    ordered = sorted(samples)
    return LatencyStats(
        min=ordered[0],
        max=ordered[-1],
        mean=sum(ordered) / len(ordered),
        p50=percentile(ordered, 50.0),
        p90=percentile(ordered, 90.0),
        p99=percentile(ordered, 99.0),
        count=len(ordered),
    )


class StatsAggregator:
    """Counters per span status plus completed-duration samples.

    Counters are maintained incrementally. Latency figures are recomputed from
    the raw samples on every call, never cached.
    """

    def __init__(self):
        self._counts = Counts()
        self._all_durations: List[float] = []
        self._durations_by_operation: Dict[str, List[float]] = defaultdict(list)
        self._operations: List[str] = []

    # -------------------------------------------------------------------------
    # Mutation (called by the ingestor only)
    # -------------------------------------------------------------------------

    def record_start(self, is_unstructured: bool) -> None:
        self._counts.running += 1
        if is_unstructured:
            self._counts.unstructured += 1

    def adjust_unstructured(self, delta: int) -> None:
        self._counts.unstructured += delta

    def record_transition(
        self,
        previous: SpanStatus,
        current: SpanStatus,
        operation: str,
        duration_ms: float,
    ) -> None:
        """Move one span between status buckets.

        A transition into COMPLETED also records ``duration_ms`` as a latency
        sample, globally and for ``operation``. Only the first terminal status
        of a span is counted: once ``previous`` is terminal the counters and
        samples stay as they are.
        """
        if previous == current or previous.is_terminal:
            return

        self._bump(previous, -1)
        self._bump(current, 1)

        if current is SpanStatus.COMPLETED:
            self._track_duration(operation, duration_ms)

    def _bump(self, status: SpanStatus, delta: int) -> None:
        field_name = status.value
        setattr(self._counts, field_name, getattr(self._counts, field_name) + delta)

    def _track_duration(self, operation: str, duration_ms: float) -> None:
        self._all_durations.append(duration_ms)
        self._durations_by_operation[operation].append(duration_ms)
        if operation not in self._operations:
            self._operations.append(operation)
            logger.debug(f"New operation registered: {operation}")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def counts(self) -> Counts:
        return self._counts.model_copy()

    def latency(self, operation: Optional[str] = None) -> LatencyStats:
        """Latency over all samples, or over one operation's samples."""
        if operation is None:
            return summarize(self._all_durations)
        return summarize(self._durations_by_operation.get(operation, []))

    def operation_stats(self) -> Dict[str, LatencyStats]:
        """One entry per operation with at least one completed sample."""
        return {
            operation: summarize(durations)
            for operation, durations in self._durations_by_operation.items()
            if durations
        }

    def operations(self) -> List[str]:
        """Operations with completed samples, in first-seen order."""
        return list(self._operations)

    def copy(self) -> "StatsAggregator":
        """Independent copy, used for consistent snapshots."""
        clone = StatsAggregator()
        clone._counts = self._counts.model_copy()
        clone._all_durations = list(self._all_durations)
        clone._durations_by_operation = defaultdict(
            list,
            {op: list(samples) for op, samples in self._durations_by_operation.items()},
        )
        clone._operations = list(self._operations)
        return clone
