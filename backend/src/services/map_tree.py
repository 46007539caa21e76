"""Helpers for walking, numbering and rendering mind map node trees."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import uuid

import jinja2

from ..models.mindmap import Citation, MapNode

OUTLINE_CONTENT_LIMIT = 100

_OUTLINE_TEMPLATE = jinja2.Environment(
    autoescape=False, trim_blocks=True, lstrip_blocks=True
).from_string(
    """{% macro render(nodes, depth) %}
{% for node in nodes %}
{{ "  " * depth }}- {{ node.title or "Untitled" }}: {{ node.content | truncate(limit, True, "...", 0) }}
{% if node.children %}{{ render(node.children, depth + 1) }}{% endif %}
{% endfor %}
{% endmacro %}
{{ render(nodes, 0) }}"""
)


def new_node_id() -> str:
    return str(uuid.uuid4())


def iter_nodes(nodes: Iterable[MapNode]) -> Iterator[MapNode]:
    """Depth-first, pre-order walk."""
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


def count_nodes(nodes: Iterable[MapNode]) -> int:
    return sum(1 for _ in iter_nodes(nodes))


def max_depth(nodes: Iterable[MapNode]) -> int:
    """Deepest ``level`` in the tree (0 for a single root or an empty tree)."""
    return max((node.level for node in iter_nodes(nodes)), default=0)


def find_node(nodes: Iterable[MapNode], node_id: str) -> Optional[MapNode]:
    for node in iter_nodes(nodes):
        if node.id == node_id:
            return node
    return None


def find_parent(nodes: List[MapNode], node_id: str) -> Optional[MapNode]:
    target = find_node(nodes, node_id)
    if target is None or target.parent_id is None:
        return None
    return find_node(nodes, target.parent_id)


def flatten(nodes: Iterable[MapNode]) -> List[MapNode]:
    """Copies of every node without children, parent links intact."""
    return [node.model_copy(update={"children": []}) for node in iter_nodes(nodes)]


def build_tree(flat_nodes: Iterable[MapNode]) -> List[MapNode]:
    """Rebuild the forest from parent-linked records, siblings sorted by order.

    Records whose parent is missing are dropped rather than promoted to roots.
    """
    by_id: Dict[str, MapNode] = {
        node.id: node.model_copy(update={"children": []}) for node in flat_nodes
    }
    roots: List[MapNode] = []
    for node in by_id.values():
        if node.parent_id is None:
            roots.append(node)
        elif node.parent_id in by_id:
            by_id[node.parent_id].children.append(node)

    def _sort(siblings: List[MapNode]) -> None:
        siblings.sort(key=lambda n: n.order)
        for sibling in siblings:
            _sort(sibling.children)

    _sort(roots)
    return roots


def assign_structure(
    nodes: List[MapNode],
    parent: Optional[MapNode] = None,
    start_order: int = 0,
) -> List[MapNode]:
    """Give every node a fresh id and a level/order consistent with its position.

    Levels start at ``parent.level + 1`` (0 without a parent); sibling order
    starts at ``start_order`` and increases by one. Children are numbered
    from 0 under their new parent. Nodes are updated in place and returned.
    """
    level = parent.level + 1 if parent is not None else 0
    parent_id = parent.id if parent is not None else None
    for index, node in enumerate(nodes):
        node.id = new_node_id()
        node.parent_id = parent_id
        node.level = level
        node.order = start_order + index
        node.citations = dedupe_citations(node.citations)
        assign_structure(node.children, parent=node)
    return nodes


def next_child_order(children: Iterable[MapNode]) -> int:
    return max((child.order for child in children), default=-1) + 1


def dedupe_citations(citations: Iterable[Citation]) -> List[Citation]:
    """Keep the first citation per (title, url) pair, preserving order."""
    seen: set[Tuple[str, Optional[str]]] = set()
    unique: List[Citation] = []
    for citation in citations:
        key = (citation.title, citation.url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(citation)
    return unique


def collect_citations(nodes: Iterable[MapNode]) -> List[Citation]:
    return dedupe_citations(c for node in iter_nodes(nodes) for c in node.citations)


def check_structure(nodes: List[MapNode], parent: Optional[MapNode] = None) -> List[str]:
    """Return invariant violations: level mismatches, order gaps and duplicate ids."""
    errors: List[str] = []
    seen: set[str] = set()

    def _walk(siblings: List[MapNode], parent: Optional[MapNode]) -> None:
        expected_level = parent.level + 1 if parent is not None else 0
        orders = sorted(node.order for node in siblings)
        if orders != list(range(len(siblings))):
            owner = parent.id if parent is not None else "root"
            errors.append(f"Sibling orders under {owner} are not 0..{len(siblings) - 1}: {orders}")
        for node in siblings:
            if node.id in seen:
                errors.append(f"Duplicate node ID: {node.id}")
            seen.add(node.id)
            if node.level != expected_level:
                errors.append(
                    f"Node {node.id} has level {node.level}, expected {expected_level}"
                )
            if parent is not None and node.parent_id != parent.id:
                errors.append(f"Node {node.id} points at parent {node.parent_id}, expected {parent.id}")
            _walk(node.children, node)

    _walk(nodes, parent)
    return errors


def render_outline(nodes: List[MapNode], content_limit: int = OUTLINE_CONTENT_LIMIT) -> str:
    """Indented bullet outline used as the map structure in summary prompts."""
    return _OUTLINE_TEMPLATE.render(nodes=nodes, limit=content_limit).rstrip("\n")


__all__ = [
    "assign_structure",
    "build_tree",
    "check_structure",
    "collect_citations",
    "count_nodes",
    "dedupe_citations",
    "find_node",
    "find_parent",
    "flatten",
    "iter_nodes",
    "max_depth",
    "new_node_id",
    "next_child_order",
    "render_outline",
]
