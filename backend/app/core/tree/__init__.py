from .engine import (
    add_node,
    apply_delta,
    create_node,
    delta_for_node_added,
    delta_for_node_created,
    delta_for_node_parent_changed,
    delta_for_node_removed,
    delta_for_node_updated,
    diff_node_sets,
    merge_deltas,
    remove_node,
    reparent_node,
    update_node,
)
from .errors import InvalidStructuralMoveError, MalformedNodeFileError, NodeNotFoundError, TreeError
from .healing import heal_node_set
from .inspector import (
    get_index_in_parent_map,
    get_parent_map,
    get_root_nodes_by_type,
    is_ancestor_of,
    materialize_subtree,
)
from .metrics import calculate_metric, compact_merge_metrics, merge_metrics
from .node import TreeNode, TreeNodeProperties, TreeNodeSet, TreeNodeSetDelta, TreeNodeUpdate

__all__ = [
	"add_node",
	"apply_delta",
	"create_node",
	"delta_for_node_added",
	"delta_for_node_created",
	"delta_for_node_parent_changed",
	"delta_for_node_removed",
	"delta_for_node_updated",
	"diff_node_sets",
	"merge_deltas",
	"remove_node",
	"reparent_node",
	"update_node",
	"InvalidStructuralMoveError",
	"MalformedNodeFileError",
	"NodeNotFoundError",
	"TreeError",
	"heal_node_set",
	"get_index_in_parent_map",
	"get_parent_map",
	"get_root_nodes_by_type",
	"is_ancestor_of",
	"materialize_subtree",
	"calculate_metric",
	"compact_merge_metrics",
	"merge_metrics",
	"TreeNode",
	"TreeNodeProperties",
	"TreeNodeSet",
	"TreeNodeSetDelta",
	"TreeNodeUpdate",
]
