"""Applies decoded lifecycle events to the tree store and stats"""

import logging

from .clock import ClockBaseline
from .models import Node, SpanStatus, TraceEvent
from .stats import StatsAggregator
from .tree_store import TreeStore

logger = logging.getLogger(__name__)


class EventIngestor:
    """Single entry point for mutating a session's tree and counters.

    Events must be applied one at a time, in delivery order. The ingestor does
    no locking of its own; TraceSession serializes calls to ``apply``.
    """

    def __init__(
        self,
        store: TreeStore,
        stats: StatsAggregator,
        clock: ClockBaseline,
    ):
        self.store = store
        self.stats = stats
        self.clock = clock

    def apply(self, event: TraceEvent) -> None:
        """Apply one event. Never raises for a validated TraceEvent."""
        start_offset_ms = self.clock.offset_ms(event.timestamp)

        if event.type == "started":
            self._apply_started(event, start_offset_ms)
        else:
            self._apply_transition(event)

    def _apply_started(self, event: TraceEvent, start_offset_ms: float) -> None:
        node = Node.from_started(event, start_offset_ms)
        previous = self.store.upsert_on_start(node)

        if previous is None:
            self.stats.record_start(event.is_unstructured)
            logger.debug(f"Started span {event.id} ({event.operation})")
            return

        # Duplicate start: the span is already counted as running (or terminal)
        if previous.is_unstructured != event.is_unstructured:
            self.stats.adjust_unstructured(1 if event.is_unstructured else -1)

    def _apply_transition(self, event: TraceEvent) -> None:
        status = SpanStatus.from_wire(event.status)
        previous = self.store.transition(event.id, status, event.duration_ms)

        if previous is None:
            logger.debug(f"Dropping {event.type} event for unknown span {event.id}")
            return

        # unrecognized statuses fall back to RUNNING and leave the counters alone
        if not status.is_terminal:
            return

        self.stats.record_transition(
            previous=previous,
            current=status,
            operation=event.operation,
            duration_ms=event.duration_ms,
        )
