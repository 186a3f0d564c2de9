"""Left-to-right tree layout for span forests.

Produces render-agnostic integer coordinates: the top-left corner of every
node box plus one connector per parent/child edge. Renderers draw each
connector as three orthogonal segments (see ``Connection.segments``).

The layout is a depth-first, post-order pass. Children are placed before their
parent so the parent can be centered between its first and last child. Each
root tree is stacked below the previous one.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from .models import Connection, LayoutResult, Node, NodePosition
from .tree_store import TreeStore, find_roots, sort_nodes

logger = logging.getLogger(__name__)

NODE_WIDTH = 180
NODE_HEIGHT = 72
HORIZONTAL_GAP = 100
VERTICAL_GAP = 20
TOP_MARGIN = 40
MAX_DEPTH = 20

Resolver = Callable[[str], Optional[Node]]


class _TreeLayout:
    """Mutable state of one layout pass."""

    def __init__(self, resolve: Resolver):
        self.resolve = resolve
        self.positions: List[NodePosition] = []
        self.connections: List[Connection] = []
        self.visited: Set[str] = set()
        # vertical center of every placed node
        self.centers: Dict[str, int] = {}

    def place(self, node: Node, level: int, start_y: int) -> int:
        """Lay out ``node``'s subtree from ``start_y``; return its height."""
        if node.id in self.visited or level > MAX_DEPTH:
            logger.warning(
                f"Layout stopped descending at span {node.id} (level {level})"
            )
            return NODE_HEIGHT
        self.visited.add(node.id)

        children = sort_nodes([
            child for child in (self.resolve(child_id) for child_id in node.child_ids)
            if child is not None
        ])
        x = level * (NODE_WIDTH + HORIZONTAL_GAP)

        if not children:
            self.positions.append(NodePosition(node=node, x=x, y=start_y, level=level))
            self.centers[node.id] = start_y + NODE_HEIGHT // 2
            return NODE_HEIGHT

        cursor = start_y
        for child in children:
            cursor += self.place(child, level + 1, cursor) + VERTICAL_GAP

        # guarded children reserve space but have no center
        child_centers = [self.centers[c.id] for c in children if c.id in self.centers]

        if child_centers:
            y = (child_centers[0] + child_centers[-1]) // 2 - NODE_HEIGHT // 2
        else:
            y = start_y
        self.positions.append(NodePosition(node=node, x=x, y=y, level=level))
        self.centers[node.id] = y + NODE_HEIGHT // 2

        for child_center in child_centers:
            self.connections.append(Connection(
                from_x=x + NODE_WIDTH,
                from_y=y + NODE_HEIGHT // 2,
                to_x=x + NODE_WIDTH + HORIZONTAL_GAP,
                to_y=child_center,
            ))

        return max(NODE_HEIGHT, cursor - start_y - VERTICAL_GAP)


def layout(roots: List[Node], resolve: Resolver) -> LayoutResult:
    """Compute positions and connectors for a forest.

    Parameters
    ----------
    roots : List[Node]
        Root nodes in the order they should be stacked; callers sort them by
        start offset for a stable picture.
    resolve : Callable[[str], Optional[Node]]
        Looks up a child by id; ids it cannot resolve are skipped.

    Returns
    -------
    LayoutResult
        Positions in post-order (children before parents) and connectors.
    """
    tree = _TreeLayout(resolve)
    current_y = TOP_MARGIN

    for root in roots:
        tree.visited.clear()
        height = tree.place(root, 0, current_y)
        current_y += height + VERTICAL_GAP * 2

    return LayoutResult(positions=tree.positions, connections=tree.connections)


def layout_nodes(nodes: Dict[str, Node]) -> LayoutResult:
    """Lay out every root of an ``id -> Node`` snapshot, sorted by start offset."""
    return layout(sort_nodes(find_roots(nodes)), nodes.get)


def layout_store(store: TreeStore) -> LayoutResult:
    """Lay out a consistent snapshot of ``store``."""
    return layout_nodes(store.snapshot())


def canvas_size(result: LayoutResult, padding: int = 50) -> Dict[str, int]:
    """Width and height needed to draw ``result``."""
    max_x = max((p.x + NODE_WIDTH for p in result.positions), default=0)
    max_y = max((p.y + NODE_HEIGHT for p in result.positions), default=0)
    return {"width": max_x + padding, "height": max_y + padding}
