from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from mailtree.components.registry import ComponentRegistry, default_registry
from mailtree.errors import ValidationFailed
from mailtree.tree.paths import CHILDREN_KEY, ROOT_SEGMENT, child_path


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _validate_node(
    node: Mapping[str, Any],
    path: str,
    registry: ComponentRegistry,
    seen_ids: dict[str, str],
    strict_props: bool,
    errors: list[str],
) -> None:
    node_id = node.get("id")
    if not isinstance(node_id, str) or not node_id.strip():
        errors.append(f"{path}: Missing required field 'id'")
    elif node_id in seen_ids:
        errors.append(f"{path}: Duplicate id '{node_id}' (first seen at {seen_ids[node_id]})")
    else:
        seen_ids[node_id] = path

    component = node.get("component")
    spec = registry.get(component) if isinstance(component, str) else None
    if not isinstance(component, str) or not component:
        errors.append(f"{path}: Missing required field 'component'")
    elif spec is None:
        errors.append(f"{path}: Unknown component type '{component}'")

    props = node.get("props", {})
    if props is None:
        props = {}
    if not isinstance(props, Mapping):
        errors.append(f"{path}: props must be an object")
        props = {}
    style = props.get("style")
    if style is not None and not isinstance(style, Mapping):
        errors.append(f"{path}: props.style must be an object")

    if spec is not None:
        for required in sorted(spec.required_props):
            if props.get(required) in (None, ""):
                errors.append(f"{path}: {component} requires prop '{required}'")
        if strict_props:
            for key in sorted(set(props) - spec.allowed_props):
                if not str(key).startswith("data-"):
                    errors.append(f"{path}: {component} does not accept prop '{key}'")

    content = node.get("content")
    if content is not None and not isinstance(content, str):
        errors.append(f"{path}: content must be a string")

    children = node.get(CHILDREN_KEY)
    if children is None:
        return
    if not isinstance(children, list):
        errors.append(f"{path}: children must be a list of components")
        return
    if children and spec is not None and not spec.container:
        errors.append(f"{path}: Component '{component}' cannot have children")


def validate_tree(
    root: Any,
    registry: Optional[ComponentRegistry] = None,
    *,
    strict_props: bool = False,
) -> ValidationResult:
    """Check the structural rules of a component tree. Never raises."""
    registry = registry or default_registry()
    errors: list[str] = []
    if not isinstance(root, Mapping):
        return ValidationResult(valid=False, errors=[f"{ROOT_SEGMENT}: tree root must be a component object"])

    seen_ids: dict[str, str] = {}
    visited_objects: dict[int, str] = {}
    stack: list[tuple[Any, str]] = [(root, ROOT_SEGMENT)]
    while stack:
        node, path = stack.pop()
        if not isinstance(node, Mapping):
            errors.append(f"{path}: child must be a component object, got {type(node).__name__}")
            continue
        marker = id(node)
        if marker in visited_objects:
            errors.append(f"{path}: node is shared with {visited_objects[marker]} (cycle or shared subtree)")
            continue
        visited_objects[marker] = path

        try:
            _validate_node(node, path, registry, seen_ids, strict_props, errors)
        except Exception as exc:  # noqa: BLE001
            errors.append(f"{path}: unexpected node shape ({exc})")
            continue

        children = node.get(CHILDREN_KEY)
        if isinstance(children, list):
            # reversed so that errors come out in document order
            for idx in range(len(children) - 1, -1, -1):
                stack.append((children[idx], child_path(path, idx)))

    return ValidationResult(valid=not errors, errors=errors)


def ensure_valid(root: Any, registry: Optional[ComponentRegistry] = None, *, strict_props: bool = False) -> None:
    result = validate_tree(root, registry, strict_props=strict_props)
    if not result.valid:
        raise ValidationFailed(result.errors)
