"""TOC tree utilities.

Adapters build trees (``TocNode.children``); the store keeps a flat list in
pre-order with ``parent_id`` linkage and ``depth``. Converting between the
two forms preserves document order.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sourcereg.models.registry import NodeType, TocNode, TocStats

if TYPE_CHECKING:
    from collections.abc import Iterable


def node_type_for_depth(depth: int) -> NodeType:
    if depth == 0:
        return NodeType.CHAPTER
    if depth == 1:
        return NodeType.SECTION
    if depth == 2:
        return NodeType.SUBSECTION
    return NodeType.OTHER


def flatten_toc(tree: Iterable[TocNode]) -> list[TocNode]:
    """Flatten a TOC tree in pre-order, dropping ``children`` from each node."""
    flat: list[TocNode] = []

    def visit(nodes: Iterable[TocNode]) -> None:
        for node in nodes:
            flat.append(node.model_copy(update={"children": []}))
            visit(node.children)

    visit(tree)
    return flat


def renumber(flat: Iterable[TocNode], start: int = 0) -> list[TocNode]:
    """Reassign ``sort_order`` so it strictly increases in list order."""
    return [
        node.model_copy(update={"sort_order": order})
        for order, node in enumerate(flat, start=start)
    ]


def link_parents(flat: Iterable[TocNode], asset_id: str | None = None) -> list[TocNode]:
    """Assign ids and derive ``parent_id`` from depth.

    A node's parent is the nearest preceding node with a smaller depth.
    Nodes with no such predecessor are roots.
    """
    linked: list[TocNode] = []
    stack: list[TocNode] = []
    for node in flat:
        while stack and stack[-1].depth >= node.depth:
            stack.pop()
        updated = node.model_copy(
            update={
                "id": node.id or str(uuid.uuid4()),
                "asset_id": asset_id or node.asset_id,
                "parent_id": stack[-1].id if stack else None,
                "children": [],
            }
        )
        linked.append(updated)
        stack.append(updated)
    return linked


def build_tree(flat: Iterable[TocNode]) -> list[TocNode]:
    """Rebuild the tree from ``parent_id`` linkage, ordered by ``sort_order``.

    Nodes whose parent is missing from ``flat`` become roots.
    """
    ordered = sorted(flat, key=lambda node: node.sort_order)
    by_id: dict[str, TocNode] = {}
    roots: list[TocNode] = []
    for node in ordered:
        copy = node.model_copy(update={"children": []})
        if copy.id is not None:
            by_id[copy.id] = copy
        parent = by_id.get(copy.parent_id) if copy.parent_id else None
        if parent is None:
            roots.append(copy)
        else:
            parent.children.append(copy)
    return roots


def compute_toc_stats(flat: Iterable[TocNode]) -> TocStats:
    nodes = list(flat)
    return TocStats(
        chapters=sum(1 for node in nodes if node.node_type == NodeType.CHAPTER),
        sections=sum(1 for node in nodes if node.node_type == NodeType.SECTION),
        total_nodes=len(nodes),
        depth=max((node.depth for node in nodes), default=0),
    )
