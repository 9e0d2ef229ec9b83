"""HTTP endpoints over the node collection.

Mutations answer with the delta they produced so clients can patch their
local copy without re-reading the whole tree.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import Field

from app.core.tree.errors import NodeNotFoundError, TreeError
from app.core.tree.node import CamelModel, NodeType, TreeNodeProperties, TreeNodeUpdate
from app.services.tree_service import TreeService

router = APIRouter(tags=["Tree"])


class NewNodeProperties(TreeNodeProperties):
    type: Optional[NodeType] = None


class CreateNodeRequest(CamelModel):
    node: NewNodeProperties = Field(default_factory=NewNodeProperties)
    parent_node_id: str
    insert_at_index: Optional[int] = None


class MoveNodeRequest(CamelModel):
    new_parent_id: str
    insert_at_index: Optional[int] = None


def get_tree_service(request: Request) -> TreeService:
    return request.app.state.tree_service


def _http_error(exc: TreeError) -> HTTPException:
    status_code = 404 if isinstance(exc, NodeNotFoundError) else 400
    return HTTPException(status_code=status_code, detail=str(exc))


@router.get("/nodes")
def list_nodes(service: TreeService = Depends(get_tree_service)):
    return {node_id: node.to_payload() for node_id, node in service.list_nodes().items()}


@router.post("/nodes", status_code=201)
def create_node(payload: CreateNodeRequest, service: TreeService = Depends(get_tree_service)):
    properties = TreeNodeProperties.model_validate(payload.node.model_dump(exclude={"type"}))
    try:
        node, delta = service.create_node(
            properties,
            payload.parent_node_id,
            payload.insert_at_index,
            payload.node.type,
        )
    except TreeError as exc:
        raise _http_error(exc) from exc
    return {"node": node.to_payload(), "delta": delta.to_payload()}


@router.patch("/nodes/{node_id}")
def update_node(node_id: str, payload: TreeNodeUpdate, service: TreeService = Depends(get_tree_service)):
    try:
        delta = service.update_node(node_id, payload)
    except TreeError as exc:
        raise _http_error(exc) from exc
    return delta.to_payload()


@router.put("/nodes/{node_id}/parent")
def move_node(node_id: str, payload: MoveNodeRequest, service: TreeService = Depends(get_tree_service)):
    try:
        delta = service.move_node(node_id, payload.new_parent_id, payload.insert_at_index)
    except TreeError as exc:
        raise _http_error(exc) from exc
    return delta.to_payload()


@router.delete("/nodes/{node_id}")
def delete_node(node_id: str, service: TreeService = Depends(get_tree_service)):
    try:
        delta = service.delete_node(node_id)
    except TreeError as exc:
        raise _http_error(exc) from exc
    return delta.to_payload()


@router.get("/roots")
def root_nodes(service: TreeService = Depends(get_tree_service)):
    return {node_type: node.to_payload() for node_type, node in service.root_nodes().items()}


@router.get("/nodes/{node_id}/subtree")
def node_subtree(node_id: str, service: TreeService = Depends(get_tree_service)):
    try:
        return service.subtree(node_id)
    except TreeError as exc:
        raise _http_error(exc) from exc


@router.post("/nodes/{node_id}/waypoint-sync")
def sync_waypoint(node_id: str, service: TreeService = Depends(get_tree_service)):
    try:
        delta = service.sync_waypoint(node_id)
    except TreeError as exc:
        raise _http_error(exc) from exc
    return delta.to_payload()


@router.get("/nodes/{node_id}/priorities")
def priority_nodes(node_id: str, service: TreeService = Depends(get_tree_service)):
    try:
        nodes = service.priority_nodes(node_id)
    except TreeError as exc:
        raise _http_error(exc) from exc
    return [node.to_payload() for node in nodes]
