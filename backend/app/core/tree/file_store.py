"""Markdown-with-front-matter persistence for tree nodes.

One file per node under ``<root>/maps``. The YAML front matter carries the
structural fields and the body is the description. Files that are missing
fields or fail to parse are healed on read and written back.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import yaml

from .errors import MalformedNodeFileError
from .healing import heal_node_set
from .metrics import CALCULATABLE_METRICS
from .node import NODE_TYPES, READINESS_LEVEL, TreeNode, TreeNodeSet, TreeNodeSetDelta

logger = logging.getLogger(__name__)

_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL | re.MULTILINE)
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_MAX_FILENAME_STEM = 200

# Fields whose absence means the file was written by an older or foreign tool.
_REQUIRED_KEYS = ("id", "title", "type", "nodeState", "parentId", "childrenIds", "calculatedMetrics")


def sanitize_title(title: Optional[str]) -> str:
    name = (title or "").strip() or "untitled"
    return _UNSAFE_FILENAME_CHARS.sub("_", name)[:_MAX_FILENAME_STEM]


def parse_node_file(text: str) -> Tuple[Dict[str, Any], str]:
    """Split ``text`` into its front matter mapping and body.

    Text without front matter is all body. Raises ``MalformedNodeFileError``
    when the front matter is not a YAML mapping.
    """
    match = _FRONT_MATTER.match(text)
    if match is None:
        return {}, text
    raw, body = match.groups()
    try:
        data = yaml.safe_load(raw) if raw.strip() else {}
    except yaml.YAMLError as exc:
        raise MalformedNodeFileError(f"Invalid front matter: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedNodeFileError("Front matter is not a mapping")
    return data, body


def render_node_file(node: TreeNode) -> str:
    front: Dict[str, Any] = {
        "id": node.id,
        "title": node.title,
        "type": node.type,
        "nodeState": node.node_state,
        "parentId": node.parent_id,
        "childrenIds": list(node.children_ids),
    }
    if node.set_metrics:
        front["setMetrics"] = dict(node.set_metrics)
    front["calculatedMetrics"] = dict(node.calculated_metrics)
    if node.metadata:
        front["metadata"] = dict(node.metadata)
    header = yaml.safe_dump(front, sort_keys=False, allow_unicode=True, default_flow_style=False)
    body = f"{node.description}\n" if node.description else ""
    return f"---\n{header}---\n{body}"


def _int_metrics(value: Any) -> Optional[Dict[str, int]]:
    if not isinstance(value, dict):
        return None
    return {
        str(name): metric
        for name, metric in value.items()
        if name in CALCULATABLE_METRICS and isinstance(metric, int) and not isinstance(metric, bool)
    }


def _scalar_metadata(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    cleaned: Dict[str, Any] = {}
    for key, item in value.items():
        if isinstance(item, (bool, int, float, datetime, str)):
            cleaned[str(key)] = item
        elif isinstance(item, date):
            cleaned[str(key)] = item.isoformat()
    return cleaned


def _description_from_body(body: str) -> Optional[str]:
    # The renderer appends one newline; everything else belongs to the description.
    if body.endswith("\r\n"):
        body = body[:-2]
    elif body.endswith("\n"):
        body = body[:-1]
    return body or None


def node_from_front_matter(data: Dict[str, Any], body: str, fallback_title: str) -> Tuple[TreeNode, bool]:
    """Build a node from parsed file content, filling gaps.

    Returns the node and whether anything had to be filled in or corrected.
    """
    healed = any(key not in data for key in _REQUIRED_KEYS)

    node_id = data.get("id")
    if not isinstance(node_id, str) or not node_id:
        node_id = str(uuid4())
        healed = True

    if "title" in data:
        title = "" if data["title"] is None else str(data["title"])
    else:
        title = fallback_title

    node_type = data.get("type")
    if node_type not in NODE_TYPES:
        node_type = "map"
        healed = True

    node_state = data.get("nodeState")
    if node_state not in ("draft", "active"):
        node_state = "draft" if data.get("draft") is True else "active"
        healed = True

    parent_id = data.get("parentId")
    if not isinstance(parent_id, str) or not parent_id:
        parent_id = None

    children_ids = data.get("childrenIds")
    if not isinstance(children_ids, list):
        children_ids = []
    elif not all(isinstance(child_id, str) for child_id in children_ids):
        children_ids = [child_id for child_id in children_ids if isinstance(child_id, str)]
        healed = True

    set_metrics = _int_metrics(data.get("setMetrics")) or None
    calculated = _int_metrics(data.get("calculatedMetrics"))
    if calculated is None:
        calculated = {READINESS_LEVEL: 0}

    metadata = _scalar_metadata(data.get("metadata"))
    if isinstance(data.get("metadata"), dict) and len(metadata) != len(data["metadata"]):
        healed = True

    description = _description_from_body(body)
    node = TreeNode(
        id=node_id,
        title=title,
        description=description,
        metadata=metadata,
        set_metrics=set_metrics,
        node_state=node_state,
        type=node_type,
        parent_id=parent_id,
        children_ids=children_ids,
        calculated_metrics=calculated,
    )
    return node, healed


class NodeFileStore:
    """Reads and writes the node collection stored under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._maps_dir = self._root / "maps"
        self._lock = Lock()
        self._paths: Dict[str, Path] = {}
        self._maps_dir.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def maps_dir(self) -> Path:
        return self._maps_dir

    def path_of(self, node_id: str) -> Optional[Path]:
        return self._paths.get(node_id)

    def load_all(self) -> TreeNodeSet:
        """Read every node file, heal the collection and persist the repairs."""
        with self._lock:
            nodes: TreeNodeSet = {}
            paths: Dict[str, Path] = {}
            to_rewrite: List[str] = []
            for path in sorted(self._maps_dir.glob("*.md")):
                node, healed = self._read_node_file(path)
                if node.id in nodes:
                    logger.warning("Skipping %s: id %s already loaded from %s", path.name, node.id, paths[node.id].name)
                    continue
                nodes[node.id] = node
                paths[node.id] = path
                if healed:
                    to_rewrite.append(node.id)

            self._paths = paths
            for node_id in to_rewrite:
                logger.warning("Healing node file %s", paths[node_id].name)
                self._write_node(nodes[node_id])

            healed_nodes, delta = heal_node_set(nodes)
            if not delta.is_empty():
                logger.warning(
                    "Healed collection: %d node(s) updated, %d removed",
                    len(delta.updated),
                    len(delta.removed),
                )
                self._apply_delta(delta)
            return healed_nodes

    def write_node(self, node: TreeNode) -> Path:
        with self._lock:
            return self._write_node(node)

    def delete_node(self, node_id: str) -> None:
        with self._lock:
            self._delete_node(node_id)

    def apply_delta(self, delta: TreeNodeSetDelta) -> None:
        """Persist a delta: delete removed nodes, then write updated ones."""
        with self._lock:
            self._apply_delta(delta)

    # ------------------------------------------------------------------

    def _apply_delta(self, delta: TreeNodeSetDelta) -> None:
        for node_id in delta.removed:
            self._delete_node(node_id)
        for node in delta.updated.values():
            self._write_node(node)

    def _read_node_file(self, path: Path) -> Tuple[TreeNode, bool]:
        with path.open("r", encoding="utf-8") as handle:
            text = handle.read()
        try:
            data, body = parse_node_file(text)
            return node_from_front_matter(data, body, path.stem)
        except MalformedNodeFileError as exc:
            logger.warning("Malformed node file %s: %s", path.name, exc)
            match = _FRONT_MATTER.match(text)
            body = match.group(2) if match else text
            node, _ = node_from_front_matter({}, body, path.stem)
            return node, True

    def _path_for(self, node: TreeNode) -> Path:
        stem = sanitize_title(node.title)
        candidate = self._maps_dir / f"{stem}.md"
        current = self._paths.get(node.id)
        if candidate == current:
            return candidate
        taken_by_other = any(path == candidate for node_id, path in self._paths.items() if node_id != node.id)
        if taken_by_other or candidate.exists():
            candidate = self._maps_dir / f"{stem} {node.id[:8]}.md"
        return candidate

    def _write_node(self, node: TreeNode) -> Path:
        path = self._path_for(node)
        self._maps_dir.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            handle.write(render_node_file(node))
        previous = self._paths.get(node.id)
        if previous is not None and previous != path and previous.exists():
            previous.unlink()
        self._paths[node.id] = path
        return path

    def _delete_node(self, node_id: str) -> None:
        path = self._paths.pop(node_id, None)
        if path is not None and path.exists():
            path.unlink()
