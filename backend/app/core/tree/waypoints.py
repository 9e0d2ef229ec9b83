"""Waypoint helpers: mirroring a map subtree and listing priority work."""

from __future__ import annotations

from typing import Dict, List, Tuple

from .engine import (
    apply_delta,
    create_node,
    diff_node_sets,
    empty_delta,
    recalculate_metrics_delta,
    refresh_ancestor_metrics_delta,
)
from .errors import NodeNotFoundError
from .inspector import get_descendant_ids, get_nodes_by_referenced_map_id
from .node import READINESS_LEVEL, REFERENCE_MAP_NODE_ID, TreeNode, TreeNodeProperties, TreeNodeSet, TreeNodeSetDelta

OLD_NODES_TITLE = "Old Nodes"
OLD_NODES_DESCRIPTION = (
    "Contains nodes that were present in the previous waypoint subtree "
    "but are no longer present in the map subtree"
)


def waypoint_sync_delta(nodes: TreeNodeSet, waypoint_id: str) -> TreeNodeSetDelta:
    """Rebuild the subtree under ``waypoint_id`` to mirror its referenced map node.

    Existing waypoints are reused when they reference the same map node.
    Waypoints with no counterpart left are parked under a fresh "Old Nodes"
    child instead of being deleted.
    """
    root = nodes.get(waypoint_id)
    if root is None:
        raise NodeNotFoundError(waypoint_id)
    map_root = nodes.get(root.reference_map_node_id or "")
    if map_root is None:
        return empty_delta()

    existing = [nodes[node_id] for node_id in get_descendant_ids(nodes, waypoint_id)]
    by_map_id = get_nodes_by_referenced_map_id(existing)

    updated: Dict[str, TreeNode] = {}
    stack: List[Tuple[TreeNode, TreeNode]] = [(root, map_root)]
    while stack:
        waypoint, map_node = stack.pop()
        child_ids: List[str] = []
        for map_child_id in map_node.children_ids:
            map_child = nodes.get(map_child_id)
            if map_child is None:
                continue
            child = by_map_id.get(map_child_id)
            if child is None:
                child = create_node(
                    "waypoint",
                    TreeNodeProperties(title=map_child.title, metadata={REFERENCE_MAP_NODE_ID: map_child_id}),
                    waypoint.id,
                )
            else:
                child = child.model_copy(update={"parent_id": waypoint.id})
            child_ids.append(child.id)
            stack.append((child, map_child))
        updated[waypoint.id] = waypoint.model_copy(update={"children_ids": child_ids})

    leftovers = [node for node in existing if node.id not in updated]
    if leftovers:
        leftover_ids = {node.id for node in leftovers}
        top_ids = [node.id for node in leftovers if node.parent_id not in leftover_ids]
        old_nodes = create_node(
            "waypoint",
            TreeNodeProperties(title=OLD_NODES_TITLE, description=OLD_NODES_DESCRIPTION),
            waypoint_id,
        ).model_copy(update={"children_ids": top_ids})
        updated[old_nodes.id] = old_nodes
        for node in leftovers:
            changes = {"children_ids": [child_id for child_id in node.children_ids if child_id in leftover_ids]}
            if node.id in top_ids:
                changes["parent_id"] = old_nodes.id
            updated[node.id] = node.model_copy(update=changes)
        synced_root = updated[waypoint_id]
        updated[waypoint_id] = synced_root.model_copy(update={"children_ids": [*synced_root.children_ids, old_nodes.id]})

    synced = apply_delta(nodes, TreeNodeSetDelta(updated=updated))
    synced = apply_delta(synced, recalculate_metrics_delta(synced, [waypoint_id]))
    if root.parent_id:
        synced = apply_delta(synced, refresh_ancestor_metrics_delta(synced, root.parent_id))
    return diff_node_sets(nodes, synced)


def find_priority_nodes(nodes: TreeNodeSet, root_id: str) -> List[TreeNode]:
    """Nodes to work on next below ``root_id``, least ready first.

    A node with a pinned readiness level stands for its whole subtree;
    otherwise the deepest candidates below it are used. Drafts are skipped.
    """
    if root_id not in nodes:
        raise NodeNotFoundError(root_id)

    def collect(node_id: str) -> List[TreeNode]:
        node = nodes.get(node_id)
        if node is None or node.node_state == "draft":
            return []
        if (node.set_metrics or {}).get(READINESS_LEVEL) is not None:
            return [node]
        found = [candidate for child_id in node.children_ids for candidate in collect(child_id)]
        return found or [node]

    candidates = collect(root_id)
    return [
        node
        for level in range(10)
        for node in candidates
        if node.calculated_metrics.get(READINESS_LEVEL) == level
    ]
