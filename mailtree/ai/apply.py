from __future__ import annotations

import logging
from collections.abc import Mapping
from copy import deepcopy
from typing import Any, Optional

from pydantic import ValidationError

from mailtree.components.registry import ComponentRegistry
from mailtree.errors import AdapterFailure, PathInvalid
from mailtree.schemas.email import Patch, RefinementContext
from mailtree.tree.operations import Node, PatchLike, get_siblings, merge_patch, walk_tree
from mailtree.tree.paths import path_of, resolve_strict
from mailtree.tree.validate import ensure_valid

logger = logging.getLogger(__name__)


def coerce_patch(raw: Any) -> Patch:
    """Shape-check an untrusted patch payload."""
    if isinstance(raw, Patch):
        return raw
    if not isinstance(raw, Mapping):
        raise AdapterFailure(f"Patch must be an object, got {type(raw).__name__}")
    try:
        return Patch.model_validate(dict(raw))
    except ValidationError as exc:
        raise AdapterFailure(f"Invalid patch: {exc.errors()[0].get('msg', exc)}") from exc


def _apply_at(root: Node, path: str, patch: Patch, registry: ComponentRegistry) -> Node:
    cloned = deepcopy(root)
    target = resolve_strict(cloned, path)
    merged = merge_patch(target, patch)
    target.clear()
    target.update(merged)
    ensure_valid(cloned, registry)
    return cloned


def apply_patch(
    root: Node,
    path: str,
    patch: PatchLike,
    registry: ComponentRegistry,
    *,
    expected_id: Optional[str] = None,
) -> Node:
    """
    Merge `patch` into the node at `path` and return the validated new tree.

    `expected_id` guards against positional drift: if the path now resolves to
    a different node, the patch is rejected as stale instead of landing on the
    wrong component. `root` is never modified.
    """
    coerced = coerce_patch(patch)
    node = resolve_strict(root, path)
    if expected_id is not None and node.get("id") != expected_id:
        logger.info(
            "apply_patch.stale_target",
            extra={"path": path, "expected_id": expected_id, "found_id": node.get("id")},
        )
        raise PathInvalid(path, reason=f"expected node '{expected_id}', found '{node.get('id')}'")
    return _apply_at(root, path, coerced, registry)


def apply_patch_by_id(root: Node, node_id: str, patch: PatchLike, registry: ComponentRegistry) -> Node:
    coerced = coerce_patch(patch)
    path = path_of(root, node_id)
    if path is None:
        raise PathInvalid(node_id, reason="component no longer exists")
    return _apply_at(root, path, coerced, registry)


def describe_component_position(root: Node, node: Mapping[str, Any]) -> Optional[str]:
    """e.g. "Heading #2 (of 3 total Headings)"; None if the node is not in the tree."""
    component = node.get("component")
    same_type = [item for item in walk_tree(root) if item.get("component") == component]
    ids = [item.get("id") for item in same_type]
    if node.get("id") not in ids:
        return None
    position = ids.index(node.get("id")) + 1
    total = len(same_type)
    plural = "s" if total > 1 else ""
    return f"{component} #{position} (of {total} total {component}{plural})"


def build_refinement_context(
    root: Node,
    node_id: str,
    base: Optional[RefinementContext] = None,
) -> RefinementContext:
    """Fill in where the node sits (path, position, sibling text) on top of any caller-supplied context."""
    base = base or RefinementContext()
    path = path_of(root, node_id)
    if path is None:
        return base
    node = resolve_strict(root, path)
    siblings = [
        sibling["content"]
        for sibling in get_siblings(root, node_id)
        if isinstance(sibling.get("content"), str) and sibling["content"]
    ]
    updates: dict[str, Any] = {}
    if base.componentPath is None:
        updates["componentPath"] = path
    if base.componentPosition is None:
        updates["componentPosition"] = describe_component_position(root, node)
    if not base.siblingContents:
        updates["siblingContents"] = siblings
    return base.model_copy(update=updates)
