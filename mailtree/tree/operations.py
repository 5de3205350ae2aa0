"""
Pure operations over the component tree.

Every mutation clones the tree and returns the new root; the input is never
touched, so a renderer holding an older tree is unaffected by later edits.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from pydantic import ValidationError

from mailtree.components.registry import ComponentRegistry, default_registry
from mailtree.errors import ValidationFailed
from mailtree.schemas.email import Patch
from mailtree.tree.paths import (
    CHILDREN_KEY,
    ROOT_SEGMENT,
    child_path,
    parent_path,
    path_of,
    resolve,
    resolve_strict,
)

Node = dict[str, Any]
PatchLike = Union[Patch, Mapping[str, Any]]
IdFactory = Callable[[str], str]
Direction = Literal["up", "down"]


def generate_component_id(component: str) -> str:
    prefix = (component or "node").strip().lower() or "node"
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _children(node: Any) -> list[Any]:
    if not isinstance(node, dict):
        return []
    children = node.get(CHILDREN_KEY)
    return children if isinstance(children, list) else []


def walk_tree(root: Optional[Node]) -> Iterator[Node]:
    """Pre-order depth-first traversal."""
    if not isinstance(root, dict):
        return
    yield root
    for child in _children(root):
        yield from walk_tree(child)


def walk_with_paths(root: Optional[Node], path: str = ROOT_SEGMENT, depth: int = 0) -> Iterator[tuple[str, Node, int]]:
    if not isinstance(root, dict):
        return
    yield path, root, depth
    for idx, child in enumerate(_children(root)):
        yield from walk_with_paths(child, child_path(path, idx), depth + 1)


def to_patch(patch: PatchLike) -> Patch:
    """Turn an editor-supplied mapping into a Patch; malformed input raises ValidationFailed."""
    if isinstance(patch, Patch):
        return patch
    if not isinstance(patch, Mapping):
        raise ValidationFailed([f"patch: expected an object, got {type(patch).__name__}"])
    try:
        return Patch.model_validate(dict(patch))
    except ValidationError as exc:
        errors = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            errors.append(f"patch.{location}: {error.get('msg')}" if location else f"patch: {error.get('msg')}")
        raise ValidationFailed(errors) from exc


def _merge_into(target: Node, patch: Patch) -> None:
    if patch.props:
        props = dict(target.get("props") or {})
        for key, value in patch.props.items():
            existing = props.get(key)
            if key == "style" and isinstance(value, dict) and isinstance(existing, dict):
                # style merges one level deep; nested values inside it are replaced wholesale
                props["style"] = {**existing, **deepcopy(value)}
            else:
                props[key] = deepcopy(value)
        target["props"] = props
    if patch.content is not None:
        target["content"] = patch.content


def merge_patch(node: Node, patch: PatchLike) -> Node:
    """Return a copy of `node` with `patch` merged into it."""
    merged = deepcopy(node)
    _merge_into(merged, to_patch(patch))
    return merged


def find_by_id(root: Optional[Node], node_id: str) -> Optional[Node]:
    for node in walk_tree(root):
        if node.get("id") == node_id:
            return node
    return None


def find_by_path(root: Optional[Node], path: str) -> Optional[Node]:
    return resolve(root, path)


def _locate(root: Optional[Node], node_id: str) -> Optional[tuple[str, int]]:
    """Parent path and child index of `node_id`; None when absent or when it is the root."""
    path = path_of(root, node_id)
    if path is None or path == ROOT_SEGMENT:
        return None
    parent = parent_path(path)
    if parent is None:
        return None
    index = int(path[path.rindex("[") + 1 : -1])
    return parent, index


def update_by_id(root: Node, node_id: str, patch: PatchLike) -> Node:
    """Merge `patch` into the node with `node_id`. An absent id returns `root` itself."""
    coerced = to_patch(patch)
    path = path_of(root, node_id)
    if path is None:
        return root
    cloned = deepcopy(root)
    _merge_into(resolve_strict(cloned, path), coerced)
    return cloned


def update_by_path(root: Node, path: str, patch: PatchLike) -> Node:
    """Merge `patch` into the node at `path`; raises PathInvalid when it does not resolve."""
    coerced = to_patch(patch)
    resolve_strict(root, path)
    cloned = deepcopy(root)
    _merge_into(resolve_strict(cloned, path), coerced)
    return cloned


def delete_by_id(root: Node, node_id: str) -> Optional[Node]:
    """
    Remove the node and its subtree. Deleting the root yields None (empty tree);
    an absent id returns `root` itself.
    """
    if isinstance(root, dict) and root.get("id") == node_id:
        return None
    location = _locate(root, node_id)
    if location is None:
        return root
    parent_at, index = location
    cloned = deepcopy(root)
    parent = resolve_strict(cloned, parent_at)
    children = list(_children(parent))
    del children[index]
    parent[CHILDREN_KEY] = children
    return cloned


def move_component(root: Node, node_id: str, direction: Direction) -> Node:
    if direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
    location = _locate(root, node_id)
    if location is None:
        return root
    parent_at, index = location
    siblings = _children(resolve_strict(root, parent_at))
    new_index = index - 1 if direction == "up" else index + 1
    if new_index < 0 or new_index >= len(siblings):
        return root

    cloned = deepcopy(root)
    parent = resolve_strict(cloned, parent_at)
    children = list(_children(parent))
    children[index], children[new_index] = children[new_index], children[index]
    parent[CHILDREN_KEY] = children
    return cloned


def _reassign_ids(node: Node, id_factory: IdFactory) -> None:
    for item in walk_tree(node):
        item["id"] = id_factory(str(item.get("component") or "node"))


def duplicate_component(root: Node, node_id: str, *, id_factory: Optional[IdFactory] = None) -> Node:
    """
    Insert a deep copy of the subtree right after the original. Every node in
    the copy gets a fresh id from `id_factory` (pre-order).
    """
    location = _locate(root, node_id)
    if location is None:
        return root
    parent_at, index = location
    cloned = deepcopy(root)
    parent = resolve_strict(cloned, parent_at)
    children = list(_children(parent))
    duplicate = deepcopy(children[index])
    _reassign_ids(duplicate, id_factory or generate_component_id)
    children.insert(index + 1, duplicate)
    parent[CHILDREN_KEY] = children
    return cloned


def insert_component(
    root: Node,
    parent_id: str,
    node: Node,
    index: Optional[int] = None,
    registry: Optional[ComponentRegistry] = None,
) -> Node:
    """
    Insert `node` under the container `parent_id`. An absent parent, or one
    that cannot hold children, returns `root` itself.
    """
    registry = registry or default_registry()
    path = path_of(root, parent_id)
    if path is None:
        return root
    if not registry.can_have_children(str(resolve_strict(root, path).get("component"))):
        return root
    cloned = deepcopy(root)
    parent = resolve_strict(cloned, path)
    children = list(_children(parent))
    insert_at = len(children) if index is None else max(0, min(index, len(children)))
    children.insert(insert_at, deepcopy(node))
    parent[CHILDREN_KEY] = children
    return cloned


def can_insert_component(
    root: Node,
    parent_id: str,
    component: str,
    registry: Optional[ComponentRegistry] = None,
) -> bool:
    registry = registry or default_registry()
    parent = find_by_id(root, parent_id)
    if parent is None:
        return False
    if component not in registry:
        return False
    return registry.can_have_children(str(parent.get("component")))


def get_parent(root: Node, node_id: str) -> Optional[Node]:
    location = _locate(root, node_id)
    if location is None:
        return None
    return resolve(root, location[0])


def get_siblings(root: Node, node_id: str) -> list[Node]:
    parent = get_parent(root, node_id)
    if parent is None:
        return []
    return [child for child in _children(parent) if child.get("id") != node_id]


def get_component_index(root: Node, node_id: str) -> int:
    location = _locate(root, node_id)
    return location[1] if location else -1


def get_component_depth(root: Node, node_id: str) -> int:
    for _, node, depth in walk_with_paths(root):
        if node.get("id") == node_id:
            return depth
    return -1


def get_breadcrumbs(root: Node, node_id: str) -> list[str]:
    """componentType of every node from the root down to the target, inclusive."""
    trail: list[str] = []

    def _visit(node: Node) -> bool:
        trail.append(str(node.get("component")))
        if node.get("id") == node_id:
            return True
        for child in _children(node):
            if isinstance(child, dict) and _visit(child):
                return True
        trail.pop()
        return False

    if isinstance(root, dict) and _visit(root):
        return trail
    return []


def count_components(root: Optional[Node]) -> int:
    return sum(1 for _ in walk_tree(root))


@dataclass
class TreeStats:
    total_components: int = 0
    max_depth: int = 0
    component_types: dict[str, int] = field(default_factory=dict)
    editable_components: int = 0


def get_tree_stats(root: Node, registry: Optional[ComponentRegistry] = None) -> TreeStats:
    registry = registry or default_registry()
    stats = TreeStats()
    for _, node, depth in walk_with_paths(root):
        component = str(node.get("component"))
        stats.total_components += 1
        stats.max_depth = max(stats.max_depth, depth)
        stats.component_types[component] = stats.component_types.get(component, 0) + 1
        if registry.is_editable(component):
            stats.editable_components += 1
    return stats


@dataclass(frozen=True)
class SelectableElement:
    id: str
    path: str
    component: str
    props: dict[str, Any]
    content: Optional[str]
    parent_path: Optional[str]
    editable: bool = True


def flatten_component_tree(root: Node, registry: Optional[ComponentRegistry] = None) -> list[SelectableElement]:
    """Editable nodes in document order, with the paths used as click targets."""
    registry = registry or default_registry()
    elements: list[SelectableElement] = []
    for path, node, _ in walk_with_paths(root):
        component = str(node.get("component"))
        if not registry.is_editable(component):
            continue
        elements.append(
            SelectableElement(
                id=str(node.get("id")),
                path=path,
                component=component,
                props=dict(node.get("props") or {}),
                content=node.get("content"),
                parent_path=parent_path(path),
            )
        )
    return elements
