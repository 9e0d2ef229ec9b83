"""Pure tree mutations over a ``TreeNodeSet``.

Every mutation is computed as a ``TreeNodeSetDelta`` against the untouched
input collection; ``apply_delta`` turns it into the new collection. Nothing
here performs I/O or mutates its arguments. Callers may chain operations by
passing the previous delta as ``base_delta``.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from .errors import InvalidStructuralMoveError, NodeNotFoundError
from .inspector import get_descendant_ids, get_root_nodes, is_ancestor_of
from .metrics import calculate_all_metrics, calculate_node_metrics, compact_merge_metrics, compact_metrics, metrics_are_same
from .node import (
    NodeType,
    TreeNode,
    TreeNodeProperties,
    TreeNodeSet,
    TreeNodeSetDelta,
    TreeNodeUpdate,
)

# ------------------------------------------------------------
# Node construction
# ------------------------------------------------------------


def create_node(
    node_type: NodeType,
    properties: Optional[TreeNodeProperties] = None,
    parent_id: Optional[str] = None,
) -> TreeNode:
    properties = properties or TreeNodeProperties()
    fields = properties.model_dump(exclude={"set_metrics"})
    set_metrics = compact_metrics(properties.set_metrics) if properties.set_metrics is not None else None
    return TreeNode(
        id=str(uuid4()),
        type=node_type,
        parent_id=parent_id,
        children_ids=[],
        set_metrics=set_metrics,
        calculated_metrics=calculate_all_metrics(set_metrics, []),
        **fields,
    )


def apply_node_update(node: TreeNode, update: Union[TreeNodeUpdate, Mapping]) -> TreeNode:
    """Return ``node`` with the sent fields of ``update`` applied."""
    if not isinstance(update, TreeNodeUpdate):
        update = TreeNodeUpdate.model_validate(update)
    sent = update.model_dump(exclude_unset=True)
    changes = {}
    for name in ("title", "metadata", "node_state"):
        if sent.get(name) is not None:
            changes[name] = sent[name]
    if "description" in sent:
        changes["description"] = sent["description"]
    if sent.get("set_metrics") is not None:
        merged = compact_merge_metrics(node.set_metrics, sent["set_metrics"])
        if merged != compact_metrics(node.set_metrics):
            changes["set_metrics"] = merged
    return node.model_copy(update=changes) if changes else node


def nodes_are_equal(a: Optional[TreeNode], b: Optional[TreeNode]) -> bool:
    if a is None or b is None:
        return a is b
    return a.model_dump() == b.model_dump()


# ------------------------------------------------------------
# Child list helpers (splice semantics)
# ------------------------------------------------------------


def _resolve_insert_index(insert_at_index: Optional[int], length: int) -> Optional[int]:
    # None means append; negative or past-the-end indices also append.
    if insert_at_index is None or insert_at_index < 0 or insert_at_index >= length:
        return None
    return insert_at_index


def children_ids_with_insertion(children_ids: List[str], node_id: str, insert_at_index: Optional[int] = None) -> List[str]:
    result = [child_id for child_id in children_ids if child_id != node_id]
    index = _resolve_insert_index(insert_at_index, len(result))
    if index is None:
        result.append(node_id)
    else:
        result.insert(index, node_id)
    return result


def children_ids_with_removal(children_ids: List[str], node_id: str) -> List[str]:
    return [child_id for child_id in children_ids if child_id != node_id]


def children_ids_with_move(children_ids: List[str], node_id: str, target_index: Optional[int]) -> List[str]:
    """Reorder ``node_id`` inside ``children_ids``.

    ``target_index`` names a slot in the current order; a slot after the
    node's own position shifts down by one once the node is taken out.
    """
    if node_id not in children_ids:
        return children_ids_with_insertion(children_ids, node_id, target_index)
    current_index = children_ids.index(node_id)
    index = _resolve_insert_index(target_index, len(children_ids))
    if index is not None and index > current_index:
        index -= 1
    return children_ids_with_insertion(children_ids, node_id, index)


# ------------------------------------------------------------
# Delta plumbing
# ------------------------------------------------------------


def empty_delta() -> TreeNodeSetDelta:
    return TreeNodeSetDelta()


def apply_delta(nodes: TreeNodeSet, delta: TreeNodeSetDelta) -> TreeNodeSet:
    if delta.is_empty():
        return dict(nodes)
    result = dict(nodes)
    result.update(delta.updated)
    for node_id in delta.removed:
        result.pop(node_id, None)
    return result


def merge_deltas(first: Optional[TreeNodeSetDelta], second: Optional[TreeNodeSetDelta]) -> TreeNodeSetDelta:
    if first is None or second is None:
        return (first or second or empty_delta()).copy_working()
    updated = {node_id: node for node_id, node in first.updated.items() if node_id not in second.removed}
    updated.update(second.updated)
    removed = {node_id: node for node_id, node in first.removed.items() if node_id not in second.updated}
    removed.update(second.removed)
    return TreeNodeSetDelta(updated=updated, removed=removed)


def diff_node_sets(old: TreeNodeSet, new: TreeNodeSet) -> TreeNodeSetDelta:
    removed = {node_id: node for node_id, node in old.items() if node_id not in new}
    updated = {node_id: node for node_id, node in new.items() if not nodes_are_equal(old.get(node_id), node)}
    return TreeNodeSetDelta(updated=updated, removed=removed)


def _working(base_delta: Optional[TreeNodeSetDelta]) -> TreeNodeSetDelta:
    return base_delta.copy_working() if base_delta is not None else empty_delta()


def _prune_unchanged(nodes: TreeNodeSet, delta: TreeNodeSetDelta) -> TreeNodeSetDelta:
    delta.updated = {
        node_id: node for node_id, node in delta.updated.items() if not nodes_are_equal(nodes.get(node_id), node)
    }
    return delta


def lookup_node(nodes: TreeNodeSet, delta: TreeNodeSetDelta, node_id: Optional[str]) -> Optional[TreeNode]:
    if not node_id or node_id in delta.removed:
        return None
    if node_id in delta.updated:
        return delta.updated[node_id]
    return nodes.get(node_id)


def _get(nodes: TreeNodeSet, delta: TreeNodeSetDelta, node_id: str, role: str = "Node") -> TreeNode:
    node = lookup_node(nodes, delta, node_id)
    if node is None:
        raise NodeNotFoundError(node_id, role)
    return node


def _view(nodes: TreeNodeSet, delta: TreeNodeSetDelta) -> TreeNodeSet:
    return nodes if delta.is_empty() else apply_delta(nodes, delta)


def _refresh_metrics(nodes: TreeNodeSet, delta: TreeNodeSetDelta, start_id: Optional[str]) -> bool:
    """Recompute metrics from ``start_id`` upward, stopping once nothing changes.

    Returns whether ``start_id`` itself got new metrics.
    """
    node_id = start_id
    visited = set()
    changed = False
    while node_id and node_id not in visited:
        visited.add(node_id)
        node = _get(nodes, delta, node_id)
        children = [_get(nodes, delta, child_id) for child_id in node.children_ids]
        referenced = lookup_node(nodes, delta, node.reference_map_node_id)
        metrics = calculate_node_metrics(node, [child for child in children if child.is_active], referenced)
        if metrics_are_same(metrics, node.calculated_metrics):
            break
        delta.updated[node_id] = node.model_copy(update={"calculated_metrics": metrics})
        changed = changed or node_id == start_id
        node_id = node.parent_id
    return changed


def _refresh_referencing_nodes(nodes: TreeNodeSet, delta: TreeNodeSetDelta) -> None:
    """Refresh nodes whose referenced node got new metrics or was removed, and their ancestors."""
    # Each round settles at least one follower, so chains end within len(nodes) rounds.
    for _ in range(len(nodes) + 1):
        changed = set(delta.removed)
        for node_id, node in delta.updated.items():
            previous = nodes.get(node_id)
            if previous is None or not metrics_are_same(previous.calculated_metrics, node.calculated_metrics):
                changed.add(node_id)
        view = _view(nodes, delta)
        followers = [node.id for node in view.values() if node.reference_map_node_id in changed]
        progressed = False
        for follower_id in followers:
            progressed = _refresh_metrics(nodes, delta, follower_id) or progressed
        if not progressed:
            return


def refresh_ancestor_metrics_delta(
    nodes: TreeNodeSet,
    node_id: str,
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    delta = _working(base_delta)
    _refresh_metrics(nodes, delta, node_id)
    _refresh_referencing_nodes(nodes, delta)
    return _prune_unchanged(nodes, delta)


def recalculate_metrics_delta(
    nodes: TreeNodeSet,
    root_ids: Optional[Iterable[str]] = None,
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    """Recompute every node below ``root_ids`` (default: all roots), children first.

    Map roots go first so waypoints that reference map nodes see fresh values.
    """
    delta = _working(base_delta)
    view = _view(nodes, delta)
    if root_ids is None:
        roots = sorted(get_root_nodes(view), key=lambda root: root.type != "map")
        root_ids = [root.id for root in roots]
    for root_id in root_ids:
        for node_id in reversed(get_descendant_ids(view, root_id, include_self=True)):
            node = delta.updated.get(node_id) or view[node_id]
            children = [delta.updated.get(child_id) or view[child_id] for child_id in node.children_ids if child_id in view]
            ref_id = node.reference_map_node_id
            referenced = (delta.updated.get(ref_id) or view.get(ref_id)) if ref_id else None
            metrics = calculate_node_metrics(node, [child for child in children if child.is_active], referenced)
            if not metrics_are_same(metrics, node.calculated_metrics):
                delta.updated[node_id] = node.model_copy(update={"calculated_metrics": metrics})
    return _prune_unchanged(nodes, delta)


# ------------------------------------------------------------
# Mutations as deltas
# ------------------------------------------------------------


def delta_for_node_added(
    nodes: TreeNodeSet,
    node: TreeNode,
    parent_id: str,
    insert_at_index: Optional[int] = None,
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    delta = _working(base_delta)
    parent = _get(nodes, delta, parent_id, "Parent node")
    if lookup_node(nodes, delta, node.id) is not None:
        raise InvalidStructuralMoveError(f"Node {node.id} already exists")

    delta.updated[parent_id] = parent.model_copy(
        update={"children_ids": children_ids_with_insertion(parent.children_ids, node.id, insert_at_index)}
    )
    # New nodes always enter as leaves.
    delta.updated[node.id] = node.model_copy(update={"parent_id": parent_id, "children_ids": []})
    _refresh_metrics(nodes, delta, node.id)
    _refresh_metrics(nodes, delta, parent_id)
    _refresh_referencing_nodes(nodes, delta)
    return _prune_unchanged(nodes, delta)


def delta_for_node_created(
    nodes: TreeNodeSet,
    properties: TreeNodeProperties,
    parent_id: str,
    insert_at_index: Optional[int] = None,
    node_type: Optional[NodeType] = None,
) -> Tuple[TreeNode, TreeNodeSetDelta]:
    parent = nodes.get(parent_id)
    if parent is None:
        raise NodeNotFoundError(parent_id, "Parent node")
    node = create_node(node_type or parent.type, properties, parent_id)
    delta = delta_for_node_added(nodes, node, parent_id, insert_at_index)
    return delta.updated[node.id], delta


def delta_for_node_updated(
    nodes: TreeNodeSet,
    node_id: str,
    update: Union[TreeNodeUpdate, Mapping],
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    delta = _working(base_delta)
    node = _get(nodes, delta, node_id)
    updated = apply_node_update(node, update)
    if nodes_are_equal(updated, node):
        return delta

    delta.updated[node_id] = updated
    _refresh_metrics(nodes, delta, node_id)
    if updated.node_state != node.node_state and node.parent_id:
        # Draft children drop out of the parent's aggregate even if their own metrics hold.
        _refresh_metrics(nodes, delta, node.parent_id)
    _refresh_referencing_nodes(nodes, delta)
    return _prune_unchanged(nodes, delta)


def delta_for_node_parent_changed(
    nodes: TreeNodeSet,
    node_id: str,
    new_parent_id: str,
    insert_at_index: Optional[int] = None,
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    delta = _working(base_delta)
    node = _get(nodes, delta, node_id)
    new_parent = _get(nodes, delta, new_parent_id, "New parent node")
    if new_parent_id == node_id:
        raise InvalidStructuralMoveError("Cannot make a node its own parent")
    if is_ancestor_of(_view(nodes, delta), node_id, new_parent_id):
        raise InvalidStructuralMoveError("Cannot move a node to one of its descendants")

    if node.parent_id == new_parent_id:
        if insert_at_index is None and node_id in new_parent.children_ids:
            return delta
        delta.updated[new_parent_id] = new_parent.model_copy(
            update={"children_ids": children_ids_with_move(new_parent.children_ids, node_id, insert_at_index)}
        )
        return _prune_unchanged(nodes, delta)

    old_parent = lookup_node(nodes, delta, node.parent_id)
    if old_parent is not None:
        delta.updated[old_parent.id] = old_parent.model_copy(
            update={"children_ids": children_ids_with_removal(old_parent.children_ids, node_id)}
        )
    delta.updated[new_parent_id] = new_parent.model_copy(
        update={"children_ids": children_ids_with_insertion(new_parent.children_ids, node_id, insert_at_index)}
    )
    delta.updated[node_id] = _get(nodes, delta, node_id).model_copy(update={"parent_id": new_parent_id})

    if old_parent is not None:
        _refresh_metrics(nodes, delta, old_parent.id)
    _refresh_metrics(nodes, delta, new_parent_id)
    _refresh_referencing_nodes(nodes, delta)
    return _prune_unchanged(nodes, delta)


def delta_for_node_removed(
    nodes: TreeNodeSet,
    node_id: str,
    base_delta: Optional[TreeNodeSetDelta] = None,
) -> TreeNodeSetDelta:
    delta = _working(base_delta)
    node = _get(nodes, delta, node_id)
    view = _view(nodes, delta)
    for removed_id in get_descendant_ids(view, node_id, include_self=True):
        delta.removed[removed_id] = view[removed_id]
        delta.updated.pop(removed_id, None)

    parent = lookup_node(nodes, delta, node.parent_id)
    if parent is not None:
        delta.updated[parent.id] = parent.model_copy(
            update={"children_ids": children_ids_with_removal(parent.children_ids, node_id)}
        )
        _refresh_metrics(nodes, delta, parent.id)
    _refresh_referencing_nodes(nodes, delta)
    return _prune_unchanged(nodes, delta)


# ------------------------------------------------------------
# Mutations as new collections
# ------------------------------------------------------------


def add_node(nodes: TreeNodeSet, node: TreeNode, parent_id: str, insert_at_index: Optional[int] = None) -> TreeNodeSet:
    return apply_delta(nodes, delta_for_node_added(nodes, node, parent_id, insert_at_index))


def update_node(nodes: TreeNodeSet, node_id: str, update: Union[TreeNodeUpdate, Mapping]) -> TreeNodeSet:
    return apply_delta(nodes, delta_for_node_updated(nodes, node_id, update))


def reparent_node(
    nodes: TreeNodeSet,
    node_id: str,
    new_parent_id: str,
    insert_at_index: Optional[int] = None,
) -> TreeNodeSet:
    return apply_delta(nodes, delta_for_node_parent_changed(nodes, node_id, new_parent_id, insert_at_index))


def remove_node(nodes: TreeNodeSet, node_id: str) -> TreeNodeSet:
    return apply_delta(nodes, delta_for_node_removed(nodes, node_id))
