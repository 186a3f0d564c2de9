"""Data models for the span aggregation service"""

from enum import Enum
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field, ConfigDict
import logging

logger = logging.getLogger(__name__)

EVENT_TYPES = ("started", "completed", "failed", "cancelled")


class SpanStatus(str, Enum):
    """Closed set of span states used internally.

    The wire format carries status as a free string; it is mapped onto this
    enum as soon as an event is ingested.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "SpanStatus":
        """Case-insensitive lookup; anything unrecognized maps to RUNNING."""
        if not value:
            return cls.RUNNING
        try:
            return cls(value.strip().lower())
        except ValueError:
            logger.warning(f"Unrecognized span status '{value}', treating as running")
            return cls.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self is not SpanStatus.RUNNING


class TraceEvent(BaseModel):
    """One lifecycle event as delivered by the transport.

    JSON keys are camelCase (``parentId``, ``durationMs`` ...); attributes are
    snake_case. Both spellings are accepted on input.
    """

    model_config = ConfigDict(
        populate_by_name=True,  # accept parent_id as well as parentId
        frozen=True,
    )

    type: str = Field(..., pattern=r'^(started|completed|failed|cancelled)$')
    id: str = Field(..., min_length=1)
    parent_id: Optional[str] = Field(None, alias="parentId")
    operation: str
    status: str
    duration_ms: float = Field(0.0, alias="durationMs")
    dispatcher: str = ""
    timestamp: int
    source_file: str = Field("", alias="sourceFile")
    line_number: int = Field(0, alias="lineNumber")
    is_unstructured: bool = Field(False, alias="isUnstructured")

    def to_wire(self) -> str:
        """Serialize with wire (camelCase) keys."""
        return self.model_dump_json(by_alias=True)


class Node(BaseModel):
    """A span as reconstructed by the tree store.

    Children are kept as ids and resolved through the store on every read.
    """

    id: str
    parent_id: Optional[str] = None
    operation: str
    status: SpanStatus = SpanStatus.RUNNING
    duration_ms: float = 0.0
    dispatcher: str = ""
    start_offset_ms: float = 0.0
    source_file: str = ""
    line_number: int = 0
    is_unstructured: bool = False
    child_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_started(cls, event: TraceEvent, start_offset_ms: float) -> "Node":
        return cls(
            id=event.id,
            parent_id=event.parent_id,
            operation=event.operation,
            dispatcher=event.dispatcher,
            start_offset_ms=start_offset_ms,
            source_file=event.source_file,
            line_number=event.line_number,
            is_unstructured=event.is_unstructured,
        )

    def sort_key(self) -> Tuple[float, str]:
        """Stable ordering: start offset, ties broken by id."""
        return (self.start_offset_ms, self.id)


class Counts(BaseModel):
    """Maintained span counters."""

    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    unstructured: int = 0


class LatencyStats(BaseModel):
    """Latency summary over a set of completed durations (milliseconds)."""

    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p99: float = 0.0
    count: int = 0


class NodePosition(BaseModel):
    """Top-left corner of a node box in layout space."""

    node: Node
    x: int
    y: int
    level: int


class Connection(BaseModel):
    """Connector from a parent's right-center to a child's left-center."""

    from_x: int
    from_y: int
    to_x: int
    to_y: int

    @property
    def mid_x(self) -> int:
        return (self.from_x + self.to_x) // 2

    def segments(self) -> List[Tuple[Tuple[int, int], Tuple[int, int]]]:
        """Three orthogonal segments: out of the parent, vertical, into the child."""
        mid_x = self.mid_x
        return [
            ((self.from_x, self.from_y), (mid_x, self.from_y)),
            ((mid_x, self.from_y), (mid_x, self.to_y)),
            ((mid_x, self.to_y), (self.to_x, self.to_y)),
        ]


class LayoutResult(BaseModel):
    positions: List[NodePosition] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)


class TimelineEntry(BaseModel):
    """An accepted event together with its human-readable session offset."""

    event: TraceEvent
    offset_ms: float
    time_offset: str


class GanttRow(BaseModel):
    """One bar of the gantt view, in depth-first tree order."""

    node: Node
    depth: int
    left: float
    width: float


class StatsResponse(BaseModel):
    """Response model for the stats endpoint."""

    counts: Counts
    latency: LatencyStats
    operation: Optional[str] = None
    operations: List[str] = Field(default_factory=list)
