"""Scene graph kept in task state.

The editor owns the real instance tree. The server keeps a partial mirror of
it built from object operations the editor reported as applied, so that
``list_children`` and ``get_properties`` can be answered without a round
trip to the plugin.

Paths are dotted (``game.Workspace.Tower``). Names that are not plain
identifiers are written in brackets (``game.Workspace["Big Tower"]``).
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from ..schemas.domain import ObjectOperation, SceneGraph, SceneNode

SERVICE_HEADS = frozenset(
    {
        "Workspace",
        "ReplicatedStorage",
        "ServerStorage",
        "StarterGui",
        "StarterPack",
        "StarterPlayer",
        "Lighting",
        "Teams",
        "SoundService",
        "TextService",
        "CollectionService",
    }
)
DEFAULT_PARENT = "game.Workspace"
MAX_DEPTH = 10
MAX_NODES = 2000
DEFAULT_MAX_NODES = 200

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def normalize_instance_path(path: Optional[str]) -> Optional[str]:
    """Trim ``path`` and prefix known service heads with ``game.``."""
    if not isinstance(path, str):
        return None
    trimmed = path.strip()
    if not trimmed:
        return None
    if not trimmed.startswith("game.") and trimmed.split(".")[0] in SERVICE_HEADS:
        trimmed = f"game.{trimmed}"
    return trimmed


def build_instance_path(parent_path: Optional[str], name: str) -> str:
    parent = normalize_instance_path(parent_path) or DEFAULT_PARENT
    if _IDENTIFIER.match(name):
        segment = name
    else:
        escaped = name.replace('"', '\\"')
        segment = f'["{escaped}"]'
    return f"{parent}.{segment}"


def split_instance_path(path: str) -> Tuple[Optional[str], str]:
    """Split into ``(parent_path, name)``, ignoring dots inside brackets."""
    normalized = normalize_instance_path(path)
    if not normalized:
        return None, ""
    depth = 0
    last_dot = -1
    for i, ch in enumerate(normalized):
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth = max(0, depth - 1)
        elif ch == "." and depth == 0:
            last_dot = i
    parent: Optional[str] = None
    segment = normalized
    if last_dot >= 0:
        parent = normalized[:last_dot]
        segment = normalized[last_dot + 1 :]
    name = segment.strip()
    if name.startswith("[") and name.endswith("]"):
        name = name[1:-1].strip()
    if len(name) >= 2 and name[0] == name[-1] and name[0] in "\"'":
        name = name[1:-1]
    return parent, name


def _node(scene: SceneGraph, path: str) -> SceneNode:
    existing = scene.nodes.get(path)
    if existing is not None:
        return existing
    parent, name = split_instance_path(path)
    node = SceneNode(path=path, parent_path=parent, name=name)
    scene.nodes[path] = node
    return node


def record_create(
    scene: SceneGraph,
    class_name: str,
    parent_path: Optional[str],
    *,
    path: Optional[str] = None,
    props: Optional[Mapping[str, Any]] = None,
) -> SceneNode:
    props_copy: Dict[str, Any] = copy.deepcopy(dict(props or {}))
    display = props_copy.get("Name") if isinstance(props_copy.get("Name"), str) else class_name
    full_path = normalize_instance_path(path) or build_instance_path(parent_path, display)
    parent, name = split_instance_path(full_path)
    props_copy.setdefault("Name", name)
    existing = scene.nodes.get(full_path)
    merged = {**existing.props, **props_copy} if existing is not None else props_copy
    node = SceneNode(path=full_path, parent_path=parent, name=name, class_name=class_name, props=merged)
    scene.nodes[full_path] = node
    return node


def record_set_properties(scene: SceneGraph, path: str, props: Mapping[str, Any]) -> None:
    full_path = normalize_instance_path(path)
    if not full_path:
        return
    node = _node(scene, full_path)
    update = copy.deepcopy(dict(props))
    if isinstance(update.get("Name"), str):
        node.name = update["Name"]
    node.props = {**node.props, **update}


def record_delete(scene: SceneGraph, path: str) -> None:
    """Drop ``path`` and everything beneath it."""
    full_path = normalize_instance_path(path)
    if not full_path:
        return
    prefix = f"{full_path}."
    for key in [k for k in scene.nodes if k == full_path or k.startswith(prefix)]:
        del scene.nodes[key]


def record_rename(scene: SceneGraph, path: str, new_name: str) -> None:
    """Rename ``path`` and re-key its descendants under the new path."""
    full_path = normalize_instance_path(path)
    if not full_path:
        return
    parent, _ = split_instance_path(full_path)
    new_path = build_instance_path(parent, new_name)
    prefix = f"{full_path}."
    new_prefix = f"{new_path}."

    moved: Dict[str, SceneNode] = {}
    for key, node in scene.nodes.items():
        if key != full_path and not key.startswith(prefix):
            continue
        is_root = key == full_path
        updated = node.model_copy(deep=True)
        updated.path = new_path if is_root else new_prefix + key[len(prefix) :]
        if node.parent_path == full_path:
            updated.parent_path = new_path
        elif node.parent_path and node.parent_path.startswith(prefix):
            updated.parent_path = new_prefix + node.parent_path[len(prefix) :]
        if is_root:
            updated.name = new_name
            updated.props["Name"] = new_name
        moved[key] = updated
    for old_key, node in moved.items():
        del scene.nodes[old_key]
    for node in moved.values():
        scene.nodes[node.path] = node


def apply_operations(scene: SceneGraph, ops: Iterable[ObjectOperation]) -> None:
    """Fold applied object operations into ``scene``; incomplete operations are skipped."""
    for op in ops:
        if op.op == "create_instance" and op.class_name and op.parent_path:
            record_create(scene, op.class_name, op.parent_path, path=op.path, props=op.props)
        elif op.op == "set_properties" and op.path and op.props:
            record_set_properties(scene, op.path, op.props)
        elif op.op == "rename_instance" and op.path and op.new_name:
            record_rename(scene, op.path, op.new_name)
        elif op.op == "delete_instance" and op.path:
            record_delete(scene, op.path)


def operation_from_payload(payload: Mapping[str, Any]) -> Optional[ObjectOperation]:
    """The object operation an editor apply report describes, if any.

    The editor reports results with camelCase keys (``className``,
    ``parentPath``, ``newName``); the snake_case spelling is accepted too.
    """
    op = payload.get("op")
    if not isinstance(op, str):
        return None
    props = payload.get("props")
    try:
        return ObjectOperation(
            op=op,
            path=payload.get("path"),
            class_name=payload.get("className", payload.get("class_name")),
            parent_path=payload.get("parentPath", payload.get("parent_path")),
            props=props if isinstance(props, dict) else None,
            new_name=payload.get("newName", payload.get("new_name")),
        )
    except ValidationError:
        return None


def list_children(
    scene: SceneGraph,
    parent_path: str,
    *,
    depth: Optional[int] = None,
    max_nodes: Optional[int] = None,
    class_whitelist: Optional[Mapping[str, bool]] = None,
) -> List[Dict[str, str]]:
    """Breadth-first listing below ``parent_path``, children sorted by name."""
    root = normalize_instance_path(parent_path)
    if not root:
        return []
    depth_limit = 1 if depth is None else max(0, min(MAX_DEPTH, depth))
    if depth_limit == 0:
        return []
    limit = DEFAULT_MAX_NODES if max_nodes is None else max(1, min(MAX_NODES, max_nodes))

    by_parent: Dict[Optional[str], List[SceneNode]] = {}
    for node in scene.nodes.values():
        by_parent.setdefault(node.parent_path, []).append(node)

    results: List[Dict[str, str]] = []
    queue: List[Tuple[str, int]] = [(root, 0)]
    while queue and len(results) < limit:
        current, level = queue.pop(0)
        next_level = level + 1
        if next_level > depth_limit:
            continue
        children = sorted(by_parent.get(current, []), key=lambda n: (n.name.lower(), n.name))
        for child in children:
            if not class_whitelist or class_whitelist.get(child.class_name):
                results.append({"className": child.class_name, "name": child.name, "path": child.path})
                if len(results) >= limit:
                    break
            if next_level < depth_limit:
                queue.append((child.path, next_level))
    return results


def get_properties(
    scene: SceneGraph,
    path: str,
    keys: Optional[List[str]] = None,
    *,
    include_attributes: bool = False,
) -> Dict[str, Any]:
    """Known properties of ``path``.

    The ``@attributes`` key collects ``@``-prefixed entries, and only when
    ``include_attributes`` is set.
    """
    full_path = normalize_instance_path(path)
    node = scene.nodes.get(full_path) if full_path else None
    if node is None:
        return {}
    if not keys:
        return copy.deepcopy(node.props)
    out: Dict[str, Any] = {}
    for key in keys:
        if key == "@attributes":
            if not include_attributes:
                continue
            out[key] = {k[1:]: copy.deepcopy(v) for k, v in node.props.items() if k.startswith("@")}
        elif key in node.props:
            out[key] = copy.deepcopy(node.props[key])
    return out
