"""Normalisation pass run on collections read back from storage.

Mutation functions assume a well-formed forest; this module is where a
collection that was left half-written on disk gets back into that shape.
Each step returns a delta against the collection it was given.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

from .engine import (
    apply_delta,
    create_node,
    delta_for_node_parent_changed,
    diff_node_sets,
    empty_delta,
    lookup_node,
    recalculate_metrics_delta,
)
from .inspector import get_root_nodes
from .node import NODE_TYPES, ROOT_NODE_DEFAULT_PROPERTIES, TreeNode, TreeNodeSet, TreeNodeSetDelta


def healed_children_ids_delta(nodes: TreeNodeSet) -> TreeNodeSetDelta:
    """Drop child ids that are missing, repeated, self-referencing or claimed by another parent.

    A child's own ``parent_id`` is authoritative.
    """
    delta = empty_delta()
    for node in nodes.values():
        seen: Set[str] = set()
        valid: List[str] = []
        for child_id in node.children_ids:
            child = nodes.get(child_id)
            if child is None or child_id == node.id or child_id in seen or child.parent_id != node.id:
                continue
            seen.add(child_id)
            valid.append(child_id)
        if valid != node.children_ids:
            delta.updated[node.id] = node.model_copy(update={"children_ids": valid})
    return delta


def vivify_root_nodes_by_type(nodes: TreeNodeSet) -> Tuple[TreeNodeSetDelta, Dict[str, TreeNode]]:
    """Ensure exactly one root per node type.

    Later same-type roots (collection order) are moved under the first one,
    keeping their subtrees. Types without a root get a default one.
    """
    delta = empty_delta()
    roots: Dict[str, TreeNode] = {}
    for node in get_root_nodes(nodes):
        established = roots.get(node.type)
        if established is None:
            roots[node.type] = node
            continue
        delta = delta_for_node_parent_changed(nodes, node.id, established.id, None, delta)

    for node_type in NODE_TYPES:
        if node_type not in roots:
            root = create_node(node_type, ROOT_NODE_DEFAULT_PROPERTIES[node_type])
            delta.updated[root.id] = root
            roots[node_type] = root

    current = {node_type: lookup_node(nodes, delta, root.id) or root for node_type, root in roots.items()}
    return delta, current


def _is_in_parent_loop(nodes: TreeNodeSet, delta: TreeNodeSetDelta, node_id: str) -> bool:
    seen: Set[str] = set()
    current: Optional[TreeNode] = lookup_node(nodes, delta, node_id)
    while current is not None and current.parent_id:
        if current.parent_id == node_id:
            return True
        if current.parent_id in seen:
            return False
        seen.add(current.parent_id)
        current = lookup_node(nodes, delta, current.parent_id)
    return False


def healed_parent_ids_delta(nodes: TreeNodeSet, roots_by_type: Dict[str, TreeNode]) -> TreeNodeSetDelta:
    """Reattach orphans and loop members to their type root; relist unlisted children."""
    delta = empty_delta()
    for node_id in list(nodes):
        node = lookup_node(nodes, delta, node_id)
        if node is None or not node.parent_id:
            continue
        root = roots_by_type.get(node.type)
        parent = lookup_node(nodes, delta, node.parent_id)
        if root is not None and root.id != node_id and (parent is None or _is_in_parent_loop(nodes, delta, node_id)):
            delta = delta_for_node_parent_changed(nodes, node_id, root.id, None, delta)
            continue
        if parent is not None and node_id not in parent.children_ids:
            delta.updated[parent.id] = parent.model_copy(update={"children_ids": [*parent.children_ids, node_id]})
    return delta


def heal_node_set(nodes: TreeNodeSet) -> Tuple[TreeNodeSet, TreeNodeSetDelta]:
    """Run every healing step; returns the healed collection and its delta against ``nodes``."""
    healed = apply_delta(nodes, healed_children_ids_delta(nodes))
    root_delta, roots_by_type = vivify_root_nodes_by_type(healed)
    healed = apply_delta(healed, root_delta)
    healed = apply_delta(healed, healed_parent_ids_delta(healed, roots_by_type))
    healed = apply_delta(healed, recalculate_metrics_delta(healed))
    return healed, diff_node_sets(nodes, healed)
