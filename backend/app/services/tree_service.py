"""Tree service: read the stored collection, run one engine operation, persist the delta."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from app.core.tree.engine import (
    delta_for_node_created,
    delta_for_node_parent_changed,
    delta_for_node_removed,
    delta_for_node_updated,
)
from app.core.tree.file_store import NodeFileStore
from app.core.tree.inspector import get_root_nodes_by_type, materialize_subtree
from app.core.tree.node import NodeType, TreeNode, TreeNodeProperties, TreeNodeSet, TreeNodeSetDelta, TreeNodeUpdate
from app.core.tree.waypoints import find_priority_nodes, waypoint_sync_delta

logger = logging.getLogger(__name__)


class TreeService:
    """Serialises tree operations against one storage folder.

    Every call re-reads the collection from disk so edits made to the files
    by hand are picked up (and healed) on the next request.
    """

    def __init__(self, store: NodeFileStore) -> None:
        self._store = store
        self._lock = Lock()

    @classmethod
    def for_folder(cls, storage_folder: Path) -> "TreeService":
        return cls(NodeFileStore(storage_folder))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_nodes(self) -> TreeNodeSet:
        with self._lock:
            return self._store.load_all()

    def root_nodes(self) -> Dict[str, TreeNode]:
        return get_root_nodes_by_type(self.list_nodes())

    def subtree(self, node_id: str) -> Dict[str, Any]:
        return materialize_subtree(self.list_nodes(), node_id)

    def priority_nodes(self, node_id: str) -> List[TreeNode]:
        return find_priority_nodes(self.list_nodes(), node_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_node(
        self,
        properties: TreeNodeProperties,
        parent_id: str,
        insert_at_index: Optional[int] = None,
        node_type: Optional[NodeType] = None,
    ) -> Tuple[TreeNode, TreeNodeSetDelta]:
        with self._lock:
            nodes = self._store.load_all()
            node, delta = delta_for_node_created(nodes, properties, parent_id, insert_at_index, node_type)
            self._store.apply_delta(delta)
        logger.info("Created %s node %s under %s", node.type, node.id, parent_id)
        return node, delta

    def update_node(self, node_id: str, update: Union[TreeNodeUpdate, Mapping]) -> TreeNodeSetDelta:
        with self._lock:
            nodes = self._store.load_all()
            delta = delta_for_node_updated(nodes, node_id, update)
            self._store.apply_delta(delta)
        logger.info("Updated node %s (%d node(s) changed)", node_id, len(delta.updated))
        return delta

    def move_node(self, node_id: str, new_parent_id: str, insert_at_index: Optional[int] = None) -> TreeNodeSetDelta:
        with self._lock:
            nodes = self._store.load_all()
            delta = delta_for_node_parent_changed(nodes, node_id, new_parent_id, insert_at_index)
            self._store.apply_delta(delta)
        logger.info("Moved node %s under %s at %s", node_id, new_parent_id, insert_at_index)
        return delta

    def delete_node(self, node_id: str) -> TreeNodeSetDelta:
        with self._lock:
            nodes = self._store.load_all()
            delta = delta_for_node_removed(nodes, node_id)
            self._store.apply_delta(delta)
        logger.info("Removed node %s and %d descendant(s)", node_id, len(delta.removed) - 1)
        return delta

    def sync_waypoint(self, node_id: str) -> TreeNodeSetDelta:
        with self._lock:
            nodes = self._store.load_all()
            delta = waypoint_sync_delta(nodes, node_id)
            self._store.apply_delta(delta)
        logger.info("Synced waypoint %s (%d node(s) changed)", node_id, len(delta.updated))
        return delta
