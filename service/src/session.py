"""Owned aggregation context for one stream of span events"""

import logging
import threading
from typing import Dict, List, Optional

from .clock import ClockBaseline
from .ingestor import EventIngestor
from .layout import layout_nodes
from .models import (
    Counts, GanttRow, LatencyStats, LayoutResult, Node, TimelineEntry, TraceEvent,
)
from .stats import StatsAggregator
from .timeline import gantt_rows, timeline_entry
from .tree_store import TreeStore, find_roots, resolve_children, sort_nodes

logger = logging.getLogger(__name__)


class SessionSnapshot:
    """Point-in-time copy of a session's tree and stats.

    Safe to read from any thread while the session keeps ingesting.
    """

    def __init__(self, nodes: Dict[str, Node], stats: StatsAggregator):
        self.nodes = nodes
        self.stats = stats

    def get(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def roots(self) -> List[Node]:
        """Root nodes sorted by start offset, ties broken by id."""
        return sort_nodes(find_roots(self.nodes))

    def children_of(self, node_id: str) -> List[Node]:
        node = self.nodes.get(node_id)
        if node is None:
            return []
        return resolve_children(self.nodes, node)

    def layout(self) -> LayoutResult:
        return layout_nodes(self.nodes)

    def gantt_rows(self, scale: float = 1.0) -> List[GanttRow]:
        return gantt_rows(self.nodes, scale)


class TraceSession:
    """One tree store, stats aggregator and clock, with a clear lifecycle.

    ``apply`` is serialized with a re-entrant lock so that readers never see a
    half-applied event. Reads copy what they need under the same lock and
    compute outside it.

    Parameters
    ----------
    adopt_orphans : bool
        Passed to the TreeStore; see ``TreeStore``.
    keep_timeline : bool
        Whether accepted events are kept for the timeline view.
    """

    def __init__(self, adopt_orphans: bool = False, keep_timeline: bool = True):
        self.adopt_orphans = adopt_orphans
        self.keep_timeline = keep_timeline
        self._lock = threading.RLock()
        self.selected_operation: Optional[str] = None
        self._build()

    def _build(self) -> None:
        self.clock = ClockBaseline()
        self.store = TreeStore(adopt_orphans=self.adopt_orphans)
        self.stats = StatsAggregator()
        self.ingestor = EventIngestor(self.store, self.stats, self.clock)
        self._timeline: List[TimelineEntry] = []

    def reset(self) -> None:
        """Drop all nodes, samples, the clock origin and the timeline."""
        with self._lock:
            self._build()
            self.selected_operation = None
        logger.info("Trace session reset")

    # =========================================================================
    # INGESTION
    # =========================================================================

    def apply(self, event: TraceEvent) -> None:
        with self._lock:
            self.ingestor.apply(event)
            if self.keep_timeline:
                self._timeline.append(
                    timeline_entry(event, self.clock.offset_ms(event.timestamp))
                )

    # transport callback name
    on_event = apply

    def apply_all(self, events: List[TraceEvent]) -> int:
        """Apply events in order; returns how many were applied."""
        with self._lock:
            for event in events:
                self.apply(event)
        return len(events)

    # =========================================================================
    # READS
    # =========================================================================

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(self.store.snapshot(), self.stats.copy())

    def get(self, node_id: str) -> Optional[Node]:
        with self._lock:
            return self.store.get(node_id)

    def roots(self) -> List[Node]:
        """Root nodes, in no guaranteed order."""
        with self._lock:
            return self.store.roots()

    def children_of(self, node_id: str) -> List[Node]:
        with self._lock:
            return self.store.children_of(node_id)

    def counts(self) -> Counts:
        with self._lock:
            return self.stats.counts()

    def latency(self, operation: Optional[str] = None) -> LatencyStats:
        with self._lock:
            return self.stats.latency(operation)

    def operation_stats(self) -> Dict[str, LatencyStats]:
        with self._lock:
            return self.stats.operation_stats()

    def operations(self) -> List[str]:
        with self._lock:
            return self.stats.operations()

    def set_operation_filter(self, operation: Optional[str]) -> None:
        """Select the operation used by ``filtered_latency`` (None = all)."""
        self.selected_operation = operation

    def filtered_latency(self) -> LatencyStats:
        return self.latency(self.selected_operation)

    def layout(self) -> LayoutResult:
        return self.snapshot().layout()

    def timeline(self) -> List[TimelineEntry]:
        with self._lock:
            return list(self._timeline)

    def gantt_rows(self, scale: float = 1.0) -> List[GanttRow]:
        return self.snapshot().gantt_rows(scale)

    def __len__(self) -> int:
        with self._lock:
            return len(self.store)
