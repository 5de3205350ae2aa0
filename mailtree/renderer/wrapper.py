"""
The standard email skeleton (Html > Head + Body > Container) that wraps all
authored content. Content nodes live in the main container; the inbox preview
line lives in Head.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any, Iterable, Optional

from mailtree.config import settings as app_settings
from mailtree.schemas.email import GlobalSettings

Node = dict[str, Any]

WRAPPER_ROOT_ID = "html-root"
HEAD_ID = "head"
BODY_ID = "body"
MAIN_CONTAINER_ID = "main-container"
PREVIEW_ID = "preview-text"

DEFAULT_BACKGROUND = "#ffffff"


def create_wrapper(settings: GlobalSettings) -> Node:
    return {
        "id": WRAPPER_ROOT_ID,
        "component": "Html",
        "props": {"lang": app_settings.RENDER_DEFAULT_LANG},
        "children": [
            {
                "id": HEAD_ID,
                "component": "Head",
                "props": {},
                "children": [],
            },
            {
                "id": BODY_ID,
                "component": "Body",
                "props": {
                    "style": {
                        "fontFamily": settings.fontFamily,
                        "backgroundColor": settings.backgroundColor or DEFAULT_BACKGROUND,
                        "margin": 0,
                        "padding": 0,
                    },
                },
                "children": [
                    {
                        "id": MAIN_CONTAINER_ID,
                        "component": "Container",
                        "props": {
                            "style": {
                                "maxWidth": settings.maxWidth,
                                "margin": "0 auto",
                            },
                        },
                        "children": [],
                    },
                ],
            },
        ],
    }


def _find_child(node: Node, component: str) -> Optional[Node]:
    for child in node.get("children") or []:
        if isinstance(child, dict) and child.get("component") == component:
            return child
    return None


def _head(tree: Node) -> Node:
    head = _find_child(tree, "Head")
    if head is None:
        raise ValueError("Email tree has no Head component")
    return head


def get_main_container(tree: Node) -> Node:
    body = _find_child(tree, "Body")
    container = _find_child(body, "Container") if body else None
    if container is None:
        raise ValueError("Email tree has no Body > Container slot")
    return container


def insert_content(wrapper: Node, content: Iterable[Node]) -> Node:
    """Place `content` (in order) into the wrapper's main container. Returns a new tree."""
    cloned = deepcopy(wrapper)
    get_main_container(cloned)["children"] = [deepcopy(node) for node in content]
    return cloned


def add_preview(tree: Node, preview_text: str) -> Node:
    """Insert the hidden inbox preview as the first child of Head, replacing any existing one."""
    cloned = deepcopy(tree)
    head = _head(cloned)
    remaining = [child for child in head.get("children") or [] if child.get("component") != "Preview"]
    preview = {"id": PREVIEW_ID, "component": "Preview", "props": {}, "content": preview_text}
    head["children"] = [preview, *remaining]
    return cloned


def extract_preview(content: Iterable[Node]) -> Optional[Node]:
    for node in content:
        if isinstance(node, dict) and node.get("component") == "Preview":
            return node
    return None


def is_valid_wrapper(tree: Any) -> bool:
    if not isinstance(tree, dict) or tree.get("component") != "Html":
        return False
    children = tree.get("children")
    if not isinstance(children, list) or len(children) != 2:
        return False
    head, body = children
    if not isinstance(head, dict) or head.get("component") != "Head":
        return False
    if not isinstance(body, dict) or body.get("component") != "Body":
        return False
    body_children = body.get("children")
    if not isinstance(body_children, list) or not body_children:
        return False
    container = body_children[0]
    return isinstance(container, dict) and container.get("component") == "Container"
