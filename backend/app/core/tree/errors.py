"""Error types raised by the tree engine and its file store."""

from __future__ import annotations


class TreeError(RuntimeError):
    """Base class for tree engine failures."""


class NodeNotFoundError(TreeError):
    def __init__(self, node_id: str, role: str = "Node") -> None:
        super().__init__(f"{role} {node_id} not found")
        self.node_id = node_id
        self.role = role


class InvalidStructuralMoveError(TreeError):
    """Raised when a move or insert would break the forest shape."""


class MalformedNodeFileError(TreeError):
    """A persisted node file could not be parsed; handled inside the file store."""
