from typing import Dict, Optional

import pytest

from app.core.tree.engine import (
    apply_delta,
    children_ids_with_move,
    create_node,
    delta_for_node_added,
    delta_for_node_created,
    delta_for_node_parent_changed,
    delta_for_node_removed,
    delta_for_node_updated,
    merge_deltas,
    remove_node,
    reparent_node,
    update_node,
)
from app.core.tree.errors import InvalidStructuralMoveError, NodeNotFoundError
from app.core.tree.inspector import get_active_children, is_ancestor_of
from app.core.tree.metrics import calculate_node_metrics
from app.core.tree.node import TreeNodeProperties, TreeNodeSet


def _root(title: str = "R") -> TreeNodeSet:
    root = create_node("map", TreeNodeProperties(title=title))
    return {root.id: root}


def _root_id(nodes: TreeNodeSet) -> str:
    return next(node.id for node in nodes.values() if node.parent_id is None)


def _add(nodes: TreeNodeSet, parent_id: str, title: str, readiness: Optional[int] = None, **fields):
    set_metrics = {"readinessLevel": readiness} if readiness is not None else None
    properties = TreeNodeProperties(title=title, set_metrics=set_metrics, **fields)
    node, delta = delta_for_node_created(nodes, properties, parent_id)
    return apply_delta(nodes, delta), node.id


def _dump(nodes: TreeNodeSet) -> Dict[str, dict]:
    return {node_id: node.model_dump() for node_id, node in nodes.items()}


def _assert_metrics_consistent(nodes: TreeNodeSet) -> None:
    for node in nodes.values():
        referenced = nodes.get(node.reference_map_node_id or "")
        expected = calculate_node_metrics(node, get_active_children(nodes, node.id), referenced)
        assert node.calculated_metrics == expected, node.title


def _readiness(nodes: TreeNodeSet, node_id: str) -> int:
    return nodes[node_id].calculated_metrics["readinessLevel"]


def test_child_override_propagates_to_root() -> None:
    nodes = _root()
    root_id = _root_id(nodes)

    nodes, a_id = _add(nodes, root_id, "A", readiness=5)
    assert _readiness(nodes, root_id) == 5

    nodes, b_id = _add(nodes, root_id, "B", readiness=2)
    assert _readiness(nodes, root_id) == 2
    assert nodes[root_id].children_ids == [a_id, b_id]
    _assert_metrics_consistent(nodes)


def test_clearing_override_resets_to_default() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A", readiness=5)
    nodes, _ = _add(nodes, root_id, "B", readiness=2)

    nodes = update_node(nodes, a_id, {"setMetrics": {"readinessLevel": None}})

    assert nodes[a_id].set_metrics == {}
    assert _readiness(nodes, a_id) == 0
    assert _readiness(nodes, root_id) == 0
    _assert_metrics_consistent(nodes)


def test_same_parent_reorder_moves_to_requested_slot() -> None:
    nodes = _root()
    parent_id = _root_id(nodes)
    ids = []
    for title in ("C1", "C2", "C3", "C4"):
        nodes, node_id = _add(nodes, parent_id, title)
        ids.append(node_id)
    c1, c2, c3, c4 = ids

    moved = reparent_node(nodes, c4, parent_id, 2)
    assert moved[parent_id].children_ids == [c1, c2, c4, c3]

    # A slot after the node's own position shifts by one once it is taken out.
    moved = reparent_node(nodes, c1, parent_id, 3)
    assert moved[parent_id].children_ids == [c2, c3, c1, c4]

    moved = reparent_node(nodes, c2, parent_id, 0)
    assert moved[parent_id].children_ids == [c2, c1, c3, c4]


@pytest.mark.parametrize("index", [None, -1, 4, 99])
def test_same_parent_reorder_only_permutes(index) -> None:
    nodes = _root()
    parent_id = _root_id(nodes)
    for title in ("C1", "C2", "C3", "C4"):
        nodes, _ = _add(nodes, parent_id, title)
    before = nodes[parent_id].children_ids
    moved = reparent_node(nodes, before[1], parent_id, index)

    after = moved[parent_id].children_ids
    assert len(after) == len(before)
    assert set(after) == set(before)


def test_reorder_without_index_is_a_no_op() -> None:
    nodes = _root()
    parent_id = _root_id(nodes)
    nodes, c1 = _add(nodes, parent_id, "C1")
    nodes, _ = _add(nodes, parent_id, "C2")

    delta = delta_for_node_parent_changed(nodes, c1, parent_id)
    assert delta.is_empty()


def test_out_of_range_reorder_appends() -> None:
    assert children_ids_with_move(["a", "b", "c"], "a", 10) == ["b", "c", "a"]
    assert children_ids_with_move(["a", "b", "c"], "c", -3) == ["a", "b", "c"]
    assert children_ids_with_move(["a", "b", "c"], "b", 3) == ["a", "c", "b"]


def test_move_under_descendant_is_rejected() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A")
    nodes, b_id = _add(nodes, a_id, "B")
    snapshot = _dump(nodes)

    assert is_ancestor_of(nodes, a_id, b_id)
    with pytest.raises(InvalidStructuralMoveError, match="descendants"):
        reparent_node(nodes, a_id, b_id)
    assert _dump(nodes) == snapshot


def test_move_under_itself_is_rejected() -> None:
    nodes = _root()
    nodes, a_id = _add(nodes, _root_id(nodes), "A")

    with pytest.raises(InvalidStructuralMoveError, match="own parent"):
        reparent_node(nodes, a_id, a_id)


def test_move_to_missing_parent_raises_not_found() -> None:
    nodes = _root()
    nodes, a_id = _add(nodes, _root_id(nodes), "A")

    with pytest.raises(NodeNotFoundError) as excinfo:
        reparent_node(nodes, a_id, "missing")
    assert excinfo.value.node_id == "missing"
    assert "New parent node" in str(excinfo.value)


def test_cross_parent_move_refreshes_both_chains() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A")
    nodes, b_id = _add(nodes, root_id, "B")
    nodes, leaf_id = _add(nodes, a_id, "Leaf", readiness=4)
    nodes = update_node(nodes, b_id, {"setMetrics": {"readinessLevel": 6}})
    assert _readiness(nodes, a_id) == 4
    assert _readiness(nodes, root_id) == 4

    delta = delta_for_node_parent_changed(nodes, leaf_id, b_id, 0)
    moved = apply_delta(nodes, delta)

    assert moved[leaf_id].parent_id == b_id
    assert moved[b_id].children_ids == [leaf_id]
    assert leaf_id not in moved[a_id].children_ids
    # A lost its only child; B keeps its override.
    assert _readiness(moved, a_id) == 0
    assert _readiness(moved, b_id) == 6
    assert _readiness(moved, root_id) == 0
    assert set(delta.updated) == {leaf_id, a_id, b_id, root_id}
    _assert_metrics_consistent(moved)


def test_remove_deletes_whole_subtree() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A")
    nodes, keep_id = _add(nodes, root_id, "Keep", readiness=3)
    nodes, a1_id = _add(nodes, a_id, "A1")
    nodes, a11_id = _add(nodes, a1_id, "A11")
    nodes, a2_id = _add(nodes, a_id, "A2")

    delta = delta_for_node_removed(nodes, a_id)
    result = apply_delta(nodes, delta)

    assert set(delta.removed) == {a_id, a1_id, a11_id, a2_id}
    for removed_id in delta.removed:
        assert removed_id not in result
    assert result[root_id].children_ids == [keep_id]
    for node in result.values():
        assert node.parent_id not in delta.removed
        assert not set(node.children_ids) & set(delta.removed)
    assert _readiness(result, root_id) == 3
    _assert_metrics_consistent(result)


def test_remove_root_drops_collection() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, _ = _add(nodes, root_id, "A")

    assert remove_node(nodes, root_id) == {}


def test_add_then_remove_round_trips() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, _ = _add(nodes, root_id, "B", readiness=2)
    before = _dump(nodes)

    added, new_id = _add(nodes, root_id, "A", readiness=1)
    assert _readiness(added, root_id) == 1

    assert _dump(remove_node(added, new_id)) == before


def test_insert_index_policy() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, first = _add(nodes, root_id, "first")
    nodes, second = _add(nodes, root_id, "second")

    head = create_node("map", TreeNodeProperties(title="head"))
    tail = create_node("map", TreeNodeProperties(title="tail"))
    far = create_node("map", TreeNodeProperties(title="far"))

    nodes = apply_delta(nodes, delta_for_node_added(nodes, head, root_id, 0))
    nodes = apply_delta(nodes, delta_for_node_added(nodes, tail, root_id, -1))
    nodes = apply_delta(nodes, delta_for_node_added(nodes, far, root_id, 99))

    assert nodes[root_id].children_ids == [head.id, first, second, tail.id, far.id]
    assert nodes[head.id].parent_id == root_id


def test_add_rejects_missing_parent_and_duplicate_id() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A")

    with pytest.raises(NodeNotFoundError):
        delta_for_node_added(nodes, create_node("map"), "missing")
    with pytest.raises(InvalidStructuralMoveError):
        delta_for_node_added(nodes, nodes[a_id], root_id)


def test_created_node_inherits_parent_type() -> None:
    waypoint_root = create_node("waypoint", TreeNodeProperties(title="Waypoints"))
    nodes = {waypoint_root.id: waypoint_root}

    node, _ = delta_for_node_created(nodes, TreeNodeProperties(title="Next"), waypoint_root.id)
    assert node.type == "waypoint"

    node, _ = delta_for_node_created(nodes, TreeNodeProperties(title="Odd"), waypoint_root.id, node_type="user")
    assert node.type == "user"


def test_identical_update_produces_empty_delta() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A", readiness=5)

    assert delta_for_node_updated(nodes, a_id, {"title": "A"}).is_empty()
    assert delta_for_node_updated(nodes, a_id, {"setMetrics": {"readinessLevel": 5}}).is_empty()
    assert delta_for_node_updated(nodes, a_id, {}).is_empty()


def test_unknown_metric_override_is_ignored() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A", readiness=5)

    assert delta_for_node_updated(nodes, a_id, {"setMetrics": {"velocity": 3}}).is_empty()

    node, _ = delta_for_node_created(
        nodes, TreeNodeProperties(title="B", set_metrics={"velocity": 3}), root_id
    )
    assert node.set_metrics == {}


def test_title_update_touches_only_that_node() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A", readiness=5)

    delta = delta_for_node_updated(nodes, a_id, {"title": "Renamed", "description": "details"})

    assert set(delta.updated) == {a_id}
    assert delta.updated[a_id].title == "Renamed"
    assert delta.updated[a_id].description == "details"


def test_update_missing_node_raises() -> None:
    with pytest.raises(NodeNotFoundError):
        update_node(_root(), "missing", {"title": "x"})


def test_draft_children_are_left_out_of_aggregate() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, _ = _add(nodes, root_id, "A", readiness=5)
    nodes, b_id = _add(nodes, root_id, "B", readiness=2)
    assert _readiness(nodes, root_id) == 2

    nodes = update_node(nodes, b_id, {"nodeState": "draft"})
    assert _readiness(nodes, root_id) == 5

    nodes = update_node(nodes, b_id, {"nodeState": "active"})
    assert _readiness(nodes, root_id) == 2
    _assert_metrics_consistent(nodes)


def test_propagation_stops_when_metrics_hold() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A", readiness=3)
    nodes, leaf_id = _add(nodes, a_id, "Leaf", readiness=1)

    delta = delta_for_node_updated(nodes, leaf_id, {"setMetrics": {"readinessLevel": 2}})

    # A pins its own value, so nothing above the leaf changes.
    assert set(delta.updated) == {leaf_id}


def test_waypoint_follows_referenced_map_node() -> None:
    nodes = _root()
    map_root = _root_id(nodes)
    nodes, target_id = _add(nodes, map_root, "Target", readiness=4)
    waypoint_root = create_node("waypoint", TreeNodeProperties(title="Waypoints"))
    nodes[waypoint_root.id] = waypoint_root

    nodes, mirror_id = _add(
        nodes,
        waypoint_root.id,
        "Mirror",
        metadata={"referenceMapNodeId": target_id},
    )

    assert _readiness(nodes, mirror_id) == 4
    assert _readiness(nodes, waypoint_root.id) == 4


def _map_with_mirror():
    nodes = _root()
    map_root = _root_id(nodes)
    nodes, target_id = _add(nodes, map_root, "Target", readiness=4)
    waypoint_root = create_node("waypoint", TreeNodeProperties(title="Waypoints"))
    nodes[waypoint_root.id] = waypoint_root
    nodes, mirror_id = _add(nodes, waypoint_root.id, "Mirror", metadata={"referenceMapNodeId": target_id})
    return nodes, target_id, mirror_id, waypoint_root.id


def test_referencing_waypoint_refreshes_when_target_changes() -> None:
    nodes, target_id, mirror_id, waypoint_root_id = _map_with_mirror()

    delta = delta_for_node_updated(nodes, target_id, {"setMetrics": {"readinessLevel": 7}})
    assert mirror_id in delta.updated
    nodes = apply_delta(nodes, delta)

    assert _readiness(nodes, target_id) == 7
    assert _readiness(nodes, mirror_id) == 7
    assert _readiness(nodes, waypoint_root_id) == 7
    _assert_metrics_consistent(nodes)


def test_referencing_waypoint_follows_target_children() -> None:
    nodes, target_id, mirror_id, waypoint_root_id = _map_with_mirror()
    nodes = apply_delta(nodes, delta_for_node_updated(nodes, target_id, {"setMetrics": {"readinessLevel": None}}))
    nodes, _ = _add(nodes, target_id, "Sub", readiness=2)

    assert _readiness(nodes, mirror_id) == 2
    assert _readiness(nodes, waypoint_root_id) == 2
    _assert_metrics_consistent(nodes)


def test_referencing_waypoint_resets_when_target_removed() -> None:
    nodes, target_id, mirror_id, waypoint_root_id = _map_with_mirror()

    nodes = apply_delta(nodes, delta_for_node_removed(nodes, target_id))

    assert target_id not in nodes
    assert _readiness(nodes, mirror_id) == 0
    assert _readiness(nodes, waypoint_root_id) == 0
    _assert_metrics_consistent(nodes)


def test_merge_deltas_keeps_latest_values() -> None:
    nodes = _root()
    root_id = _root_id(nodes)
    nodes, a_id = _add(nodes, root_id, "A")

    first = delta_for_node_updated(nodes, a_id, {"title": "one"})
    second = delta_for_node_removed(apply_delta(nodes, first), a_id)
    merged = merge_deltas(first, second)

    assert a_id in merged.removed
    assert a_id not in merged.updated
    assert merged.updated[root_id].children_ids == []
