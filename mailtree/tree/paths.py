"""
Positional addressing into a component tree.

Grammar: ``segment ('.' segment)*`` where ``segment := name ('[' index ']')?``.
The first segment is always ``root``; every following segment is
``children[n]`` and selects the n-th child (zero-based) of the node reached so
far, e.g. ``root.children[0].children[1]``.

Paths are positional: inserting or removing a sibling shifts them. Use ids for
anything that must survive concurrent edits.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from mailtree.errors import PathInvalid, PathSyntaxError

ROOT_SEGMENT = "root"
CHILDREN_KEY = "children"

_SEGMENT_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(?:\[(\d+)\])?$")
_LAST_CHILD_SEGMENT = re.compile(r"^(.+)\.children\[\d+\]$")


@dataclass(frozen=True)
class PathSegment:
    name: str
    index: Optional[int] = None

    def __str__(self) -> str:
        if self.index is None:
            return self.name
        return f"{self.name}[{self.index}]"


def parse_path(path: str) -> list[PathSegment]:
    if not isinstance(path, str) or not path.strip():
        raise PathSyntaxError(str(path), reason="path must be a non-empty string")
    segments: list[PathSegment] = []
    for raw in path.strip().split("."):
        match = _SEGMENT_PATTERN.match(raw)
        if not match:
            raise PathSyntaxError(path, segment=raw, reason="malformed segment")
        name, index = match.group(1), match.group(2)
        segments.append(PathSegment(name=name, index=int(index) if index is not None else None))
    return segments


def format_path(segments: Iterable[PathSegment]) -> str:
    return ".".join(str(segment) for segment in segments)


def child_path(path: str, index: int) -> str:
    return f"{path}.{CHILDREN_KEY}[{index}]"


def parent_path(path: str) -> Optional[str]:
    if not path or path == ROOT_SEGMENT:
        return None
    match = _LAST_CHILD_SEGMENT.match(path)
    return match.group(1) if match else None


def _walk(root: Any, path: str) -> tuple[Optional[dict[str, Any]], Optional[str]]:
    """Return (node, None) on success or (None, offending_segment) on failure."""
    segments = parse_path(path)
    head = segments[0]
    if head.name != ROOT_SEGMENT or head.index is not None:
        return None, str(head)
    if not isinstance(root, dict):
        return None, str(head)

    current: dict[str, Any] = root
    for segment in segments[1:]:
        if segment.name != CHILDREN_KEY or segment.index is None:
            return None, str(segment)
        children = current.get(CHILDREN_KEY)
        if not isinstance(children, list) or segment.index >= len(children):
            return None, str(segment)
        nxt = children[segment.index]
        if not isinstance(nxt, dict):
            return None, str(segment)
        current = nxt
    return current, None


def resolve(root: Any, path: str) -> Optional[dict[str, Any]]:
    """Read-side lookup: unresolvable or malformed paths yield None."""
    try:
        node, _ = _walk(root, path)
    except PathSyntaxError:
        return None
    return node


def resolve_strict(root: Any, path: str) -> dict[str, Any]:
    """Mutation-side lookup: an unresolvable segment is a PathInvalid failure."""
    node, failed_segment = _walk(root, path)
    if node is None:
        raise PathInvalid(path, segment=failed_segment)
    return node


def path_of(root: Any, node_id: str, current_path: str = ROOT_SEGMENT) -> Optional[str]:
    """Canonical path of the first node (pre-order) whose id matches."""
    if not isinstance(root, dict):
        return None
    if root.get("id") == node_id:
        return current_path
    children = root.get(CHILDREN_KEY)
    if isinstance(children, list):
        for idx, child in enumerate(children):
            found = path_of(child, node_id, child_path(current_path, idx))
            if found is not None:
                return found
    return None
