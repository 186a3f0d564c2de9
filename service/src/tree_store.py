"""Authoritative span tree: an arena of nodes keyed by id"""

import logging
from typing import Callable, Dict, List, Optional

from .models import Node, SpanStatus

logger = logging.getLogger(__name__)


def sort_nodes(nodes: List[Node]) -> List[Node]:
    """Order nodes by start offset, ties broken by id."""
    return sorted(nodes, key=lambda n: n.sort_key())


def find_roots(nodes: Dict[str, Node]) -> List[Node]:
    """Nodes without a parent, or whose parent is not (yet) in ``nodes``."""
    return [
        node for node in nodes.values()
        if node.parent_id is None or node.parent_id not in nodes
    ]


def resolve_children(nodes: Dict[str, Node], node: Node) -> List[Node]:
    """Resolve ``node.child_ids`` against ``nodes``, skipping missing ids."""
    return [nodes[child_id] for child_id in node.child_ids if child_id in nodes]


class TreeStore:
    """Map of span id to Node.

    Children are stored as id references and resolved at read time. Every
    query hands out copies, so callers never hold a reference into the store.

    Parameters
    ----------
    adopt_orphans : bool
        When True, a newly started node claims already-stored nodes that named
        it as their parent. Off by default: orphans stay roots.
    """

    def __init__(self, adopt_orphans: bool = False):
        self.adopt_orphans = adopt_orphans
        self._nodes: Dict[str, Node] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def upsert_on_start(self, node: Node) -> Optional[Node]:
        """Insert a freshly started node, or merge into an existing one.

        For a new id the node is stored and, if its parent is present, appended
        to the parent's ``child_ids``. For a known id the descriptive fields are
        taken from ``node`` while ``parent_id``, ``child_ids``, status and
        duration are kept.

        Returns
        -------
        Optional[Node]
            A copy of the node as it was before the merge, or None if the id was new.
        """
        existing = self._nodes.get(node.id)
        if existing is not None:
            return self._merge(existing, node)

        stored = node.model_copy(deep=True)
        self._nodes[stored.id] = stored

        if stored.parent_id is not None and stored.parent_id != stored.id:
            parent = self._nodes.get(stored.parent_id)
            if parent is not None:
                parent.child_ids.append(stored.id)

        if self.adopt_orphans:
            self._adopt(stored)

        return None

    def _merge(self, existing: Node, incoming: Node) -> Node:
        previous = existing.model_copy(deep=True)

        if incoming.parent_id != existing.parent_id:
            logger.warning(
                f"Duplicate start for span {existing.id} names parent "
                f"{incoming.parent_id!r}, keeping {existing.parent_id!r}"
            )

        existing.operation = incoming.operation
        existing.dispatcher = incoming.dispatcher
        existing.start_offset_ms = incoming.start_offset_ms
        existing.source_file = incoming.source_file
        existing.line_number = incoming.line_number
        existing.is_unstructured = incoming.is_unstructured
        logger.debug(f"Merged duplicate start for span {existing.id}")
        return previous

    def _adopt(self, parent: Node) -> None:
        # dict order is insertion order, so adopted children keep arrival order
        for candidate in self._nodes.values():
            if (
                candidate.parent_id == parent.id
                and candidate.id != parent.id
                and candidate.id not in parent.child_ids
            ):
                parent.child_ids.append(candidate.id)
                logger.debug(f"Span {parent.id} adopted orphan {candidate.id}")

    def transition(
        self,
        node_id: str,
        status: SpanStatus,
        duration_ms: float,
    ) -> Optional[SpanStatus]:
        """Update status and duration of a stored node.

        Returns
        -------
        Optional[SpanStatus]
            The status before the update, or None if ``node_id`` is unknown.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return None

        previous = node.status
        node.status = status
        node.duration_ms = duration_ms
        return previous

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, node_id: str) -> Optional[Node]:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node is not None else None

    def roots(self) -> List[Node]:
        """Root nodes, in no guaranteed order."""
        return [node.model_copy(deep=True) for node in find_roots(self._nodes)]

    def sorted_roots(self) -> List[Node]:
        return sort_nodes(self.roots())

    def children_of(self, node_id: str) -> List[Node]:
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return [
            child.model_copy(deep=True)
            for child in resolve_children(self._nodes, node)
        ]

    def snapshot(self) -> Dict[str, Node]:
        """Deep copy of the whole map."""
        return {node_id: node.model_copy(deep=True) for node_id, node in self._nodes.items()}

    def resolver(self) -> Callable[[str], Optional[Node]]:
        """``id -> Node`` lookup over a private snapshot of the store."""
        return self.snapshot().get
