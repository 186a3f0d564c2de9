"""Event timeline and gantt-row derivation"""

from typing import Dict, List, Set, Tuple

from .models import GanttRow, Node, TimelineEntry, TraceEvent
from .tree_store import find_roots, resolve_children, sort_nodes

# Minimum on-screen width of a finished bar, and of a running bar
MIN_BAR_WIDTH = 4.0
MIN_RUNNING_BAR_WIDTH = 20.0
RUNNING_BAR_FRACTION = 0.3
# Assumed extent of a span that has no duration yet
RUNNING_SPAN_EXTENT_MS = 100.0

TIME_STEPS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0)


def format_offset(offset_ms: float) -> str:
    """Format a session offset for display (e.g. "+12.5ms", "+1.25s")."""
    if offset_ms < 1000:
        return f"+{offset_ms:.1f}ms"
    return f"+{offset_ms / 1000:.2f}s"


def timeline_entry(event: TraceEvent, offset_ms: float) -> TimelineEntry:
    return TimelineEntry(
        event=event,
        offset_ms=offset_ms,
        time_offset=format_offset(offset_ms),
    )


def order_nodes(nodes: Dict[str, Node]) -> List[Tuple[Node, int]]:
    """Depth-first ``(node, depth)`` pairs, roots and children sorted by start.

    Every node appears at most once, even if child references form a cycle.
    Iterative, so arbitrarily deep chains do not hit the recursion limit.
    """
    result: List[Tuple[Node, int]] = []
    processed: Set[str] = set()

    for root in sort_nodes(find_roots(nodes)):
        stack: List[Tuple[Node, int]] = [(root, 0)]
        while stack:
            node, depth = stack.pop()
            if node.id in processed:
                continue
            processed.add(node.id)
            result.append((node, depth))
            # reversed so the earliest child is popped first
            for child in reversed(sort_nodes(resolve_children(nodes, node))):
                stack.append((child, depth + 1))
    return result


def max_time(nodes: Dict[str, Node]) -> float:
    """Right edge of the time axis in milliseconds."""
    return max(
        (
            node.start_offset_ms + node.duration_ms
            if node.duration_ms > 0
            else node.start_offset_ms + RUNNING_SPAN_EXTENT_MS
            for node in nodes.values()
        ),
        default=0.0,
    )


def time_step(scale: float) -> float:
    """Axis tick spacing (ms) that keeps labels at least ~60px apart.

    Parameters
    ----------
    scale : float
        Pixels per millisecond.
    """
    min_step = 60 / scale
    for step in TIME_STEPS_MS:
        if min_step < step:
            return step
    return 5000.0


def gantt_rows(nodes: Dict[str, Node], scale: float = 1.0) -> List[GanttRow]:
    """Bar geometry for every node, in depth-first tree order.

    Finished spans are drawn to scale with a minimum width; running spans get a
    placeholder bar proportional to the remaining axis.
    """
    end = max_time(nodes)
    rows: List[GanttRow] = []

    for node, depth in order_nodes(nodes):
        left = node.start_offset_ms * scale
        if node.duration_ms > 0:
            width = max(node.duration_ms * scale, MIN_BAR_WIDTH)
        else:
            width = max(
                (end - node.start_offset_ms) * scale * RUNNING_BAR_FRACTION,
                MIN_RUNNING_BAR_WIDTH,
            )
        rows.append(GanttRow(node=node, depth=depth, left=left, width=width))

    return rows
