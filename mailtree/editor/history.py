from __future__ import annotations

from typing import Any, Optional

from mailtree.config import settings

Node = dict[str, Any]


class EditorHistory:
    """Undo/redo stack of canonical trees (past, present, future)."""

    def __init__(self, initial: Node, limit: Optional[int] = None) -> None:
        self.limit = limit or settings.EDITOR_HISTORY_LIMIT
        self.past: list[Node] = []
        self.present: Node = initial
        self.future: list[Node] = []

    @property
    def can_undo(self) -> bool:
        return bool(self.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.future)

    def push(self, tree: Node) -> None:
        if tree is self.present:
            return
        self.past.append(self.present)
        if len(self.past) > self.limit:
            del self.past[: len(self.past) - self.limit]
        self.present = tree
        self.future.clear()

    def undo(self) -> Optional[Node]:
        if not self.past:
            return None
        self.future.insert(0, self.present)
        self.present = self.past.pop()
        return self.present

    def redo(self) -> Optional[Node]:
        if not self.future:
            return None
        self.past.append(self.present)
        self.present = self.future.pop(0)
        return self.present

    def reset(self, tree: Node) -> None:
        self.past.clear()
        self.future.clear()
        self.present = tree
