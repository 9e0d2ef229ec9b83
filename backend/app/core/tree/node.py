"""Node, collection and delta models shared by the tree engine, store and API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NodeType = Literal["map", "waypoint", "user"]
NodeState = Literal["draft", "active"]

NODE_TYPES: tuple = ("map", "waypoint", "user")

# Scalars allowed in the metadata bag.
MetadataValue = Union[bool, int, float, datetime, str]

Metrics = Dict[str, int]
UpdateMetrics = Dict[str, Optional[int]]

READINESS_LEVEL = "readinessLevel"
TARGET_READINESS_LEVEL = "targetReadinessLevel"
REFERENCE_MAP_NODE_ID = "referenceMapNodeId"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TreeNodeProperties(CamelModel):
    """User-editable part of a node."""

    title: str = ""
    description: Optional[str] = None
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)
    set_metrics: Optional[Metrics] = None
    node_state: NodeState = "active"


class TreeNodeUpdate(CamelModel):
    """Sparse patch; only fields the caller actually sent are applied.

    ``set_metrics`` values of ``None`` erase an override.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, MetadataValue]] = None
    set_metrics: Optional[UpdateMetrics] = None
    node_state: Optional[NodeState] = None


class TreeNode(TreeNodeProperties):
    id: str
    type: NodeType
    parent_id: Optional[str] = None
    children_ids: List[str] = Field(default_factory=list)
    calculated_metrics: Metrics = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.node_state == "active"

    @property
    def reference_map_node_id(self) -> Optional[str]:
        value = self.metadata.get(REFERENCE_MAP_NODE_ID)
        return value if isinstance(value, str) and value else None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# id -> node; treated as an immutable value by the engine.
TreeNodeSet = Dict[str, TreeNode]


class TreeNodeSetDelta(BaseModel):
    """Nodes added/changed (latest values) and nodes removed (last values)."""

    updated: Dict[str, TreeNode] = Field(default_factory=dict)
    removed: Dict[str, TreeNode] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.updated and not self.removed

    def copy_working(self) -> "TreeNodeSetDelta":
        return TreeNodeSetDelta(updated=dict(self.updated), removed=dict(self.removed))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "updated": {node_id: node.to_payload() for node_id, node in self.updated.items()},
            "removed": {node_id: node.to_payload() for node_id, node in self.removed.items()},
        }


ROOT_NODE_DEFAULT_PROPERTIES: Dict[str, TreeNodeProperties] = {
    "map": TreeNodeProperties(
        title="Root Problem",
        description=(
            "What is the root problem you are trying to solve? Trace your \"why\" back to the "
            "fundamental human needs you are serving. Who are you serving? What is the problem "
            "you are solving for them? What is the impact of that problem on their lives?"
        ),
    ),
    "waypoint": TreeNodeProperties(
        title="Waypoints",
        description="What is the next deliverable? What does it require? When do you need it?",
    ),
    "user": TreeNodeProperties(
        title="All Contributors",
        description="Who is contributing to this expedition?",
    ),
}
