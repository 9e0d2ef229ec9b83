"""Read-only queries over a node collection."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Set

from .errors import NodeNotFoundError
from .node import TreeNode


def is_ancestor_of(nodes: Mapping[str, TreeNode], ancestor_id: str, descendant_id: str) -> bool:
    """True when ``ancestor_id`` is reached walking parents up from ``descendant_id``.

    Missing nodes end the walk with False, and so does a parent loop.
    """
    node = nodes.get(descendant_id)
    seen: Set[str] = set()
    while node is not None and node.parent_id:
        if node.parent_id == ancestor_id:
            return True
        if node.parent_id in seen:
            return False
        seen.add(node.parent_id)
        node = nodes.get(node.parent_id)
    return False


def get_parent_map(nodes: Mapping[str, TreeNode]) -> Dict[str, str]:
    parent_map: Dict[str, str] = {}
    for node in nodes.values():
        for child_id in node.children_ids:
            parent_map[child_id] = node.id
    return parent_map


def get_index_in_parent_map(nodes: Mapping[str, TreeNode]) -> Dict[str, int]:
    index_map: Dict[str, int] = {}
    for node in nodes.values():
        for index, child_id in enumerate(node.children_ids):
            index_map[child_id] = index
    return index_map


def get_root_nodes(nodes: Mapping[str, TreeNode]) -> List[TreeNode]:
    return [node for node in nodes.values() if not node.parent_id]


def get_root_nodes_by_type(nodes: Mapping[str, TreeNode]) -> Dict[str, TreeNode]:
    """First parentless node of each type, in collection order.

    Later same-type roots are not returned; ``healing.vivify_root_nodes_by_type``
    folds them under the one returned here.
    """
    roots: Dict[str, TreeNode] = {}
    for node in get_root_nodes(nodes):
        roots.setdefault(node.type, node)
    return roots


def get_child_nodes(nodes: Mapping[str, TreeNode], node_id: str) -> List[TreeNode]:
    node = nodes.get(node_id)
    if node is None:
        return []
    return [nodes[child_id] for child_id in node.children_ids if child_id in nodes]


def get_active_children(nodes: Mapping[str, TreeNode], node_id: str) -> List[TreeNode]:
    return [child for child in get_child_nodes(nodes, node_id) if child.is_active]


def get_descendant_ids(nodes: Mapping[str, TreeNode], node_id: str, include_self: bool = False) -> List[str]:
    """Pre-order ids below ``node_id``."""
    if node_id not in nodes:
        raise NodeNotFoundError(node_id)
    collected: List[str] = [node_id] if include_self else []
    seen: Set[str] = {node_id}
    stack = list(reversed(nodes[node_id].children_ids))
    while stack:
        current = stack.pop()
        if current in seen or current not in nodes:
            continue
        seen.add(current)
        collected.append(current)
        stack.extend(reversed(nodes[current].children_ids))
    return collected


def get_nodes_by_referenced_map_id(candidates: List[TreeNode]) -> Dict[str, TreeNode]:
    by_map_id: Dict[str, TreeNode] = {}
    for node in candidates:
        map_id = node.reference_map_node_id
        if map_id:
            by_map_id.setdefault(map_id, node)
    return by_map_id


def materialize_subtree(nodes: Mapping[str, TreeNode], root_id: str) -> Dict[str, Any]:
    """Nested copy of the subtree: each node payload gains a ``children`` list."""
    if root_id not in nodes:
        raise NodeNotFoundError(root_id)

    def build(node_id: str, ancestry: Set[str]) -> Dict[str, Any]:
        node = nodes[node_id]
        payload = node.to_payload()
        payload["children"] = [
            build(child_id, ancestry | {node_id})
            for child_id in node.children_ids
            if child_id in nodes and child_id not in ancestry and child_id != node_id
        ]
        return payload

    return build(root_id, set())

