"""
Debounced edit-commit pipeline.

UI edits land in an optimistic overlay that the preview shows immediately
(`display_tree`). After `EDIT_DEBOUNCE_SECONDS` of quiet the overlay is folded
into the canonical tree in one step. Anything that reads canonical state for
persistence or sending must call `flush()` first; `EditorSession` does so.

    IDLE --commit_edit--> PENDING --timer / flush--> fold --> IDLE
                          PENDING --discard-------------------> IDLE
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator, Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from mailtree.components.registry import ComponentRegistry, default_registry
from mailtree.config import settings
from mailtree.editor.history import EditorHistory
from mailtree.errors import ValidationFailed
from mailtree.schemas.email import Patch
from mailtree.tree.operations import (
    Direction,
    Node,
    PatchLike,
    delete_by_id,
    duplicate_component,
    find_by_id,
    generate_component_id,
    insert_component,
    move_component,
    to_patch,
    update_by_id,
    walk_tree,
)
from mailtree.tree.validate import validate_tree

logger = logging.getLogger(__name__)

CommitCallback = Callable[[Node, list[str]], None]


# -- edits ------------------------------------------------------------------------


@dataclass(frozen=True)
class UpdateEdit:
    node_id: str
    patch: Patch

    def apply(self, tree: Node) -> Optional[Node]:
        return update_by_id(tree, self.node_id, self.patch)


@dataclass(frozen=True)
class DeleteEdit:
    node_id: str

    def apply(self, tree: Node) -> Optional[Node]:
        return delete_by_id(tree, self.node_id)


@dataclass(frozen=True)
class MoveEdit:
    node_id: str
    direction: Direction

    def apply(self, tree: Node) -> Optional[Node]:
        return move_component(tree, self.node_id, self.direction)


@dataclass(frozen=True)
class DuplicateEdit:
    """Ids for the copy are fixed when the edit is created so every replay yields the same tree."""

    node_id: str
    new_ids: tuple[str, ...]

    def apply(self, tree: Node) -> Optional[Node]:
        ids: Iterator[str] = iter(self.new_ids)

        def _next_id(component: str) -> str:
            return next(ids, None) or generate_component_id(component)

        return duplicate_component(tree, self.node_id, id_factory=_next_id)


@dataclass(frozen=True)
class InsertEdit:
    parent_id: str
    node: Node
    index: Optional[int] = None
    registry: Optional[ComponentRegistry] = field(default=None, compare=False, repr=False)

    def apply(self, tree: Node) -> Optional[Node]:
        return insert_component(tree, self.parent_id, self.node, self.index, self.registry)


Edit = UpdateEdit | DeleteEdit | MoveEdit | DuplicateEdit | InsertEdit


@dataclass(frozen=True)
class OverlayEntry:
    edit: Edit
    description: str
    timestamp: float


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"


# -- schedulers -------------------------------------------------------------------


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class AsyncioScheduler:
    """Schedules on an event loop; `schedule` must be called from the loop's thread."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


# -- pipeline ---------------------------------------------------------------------


class EditCommitPipeline:
    def __init__(
        self,
        tree: Node,
        *,
        registry: Optional[ComponentRegistry] = None,
        scheduler: Optional[Scheduler] = None,
        debounce_seconds: Optional[float] = None,
        on_commit: Optional[CommitCallback] = None,
        history: Optional[EditorHistory] = None,
    ) -> None:
        self.registry = registry or default_registry()
        result = validate_tree(tree, self.registry)
        if not result.valid:
            raise ValidationFailed(result.errors)
        self.scheduler: Scheduler = scheduler or ThreadingScheduler()
        self.debounce_seconds = settings.EDIT_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.on_commit = on_commit
        self.history = history or EditorHistory(tree)

        self._lock = threading.RLock()
        self._canonical: Node = tree
        self._overlay: list[OverlayEntry] = []
        self._timer: Optional[TimerHandle] = None
        self._generation = 0
        # commits queue in fold order; _notify_lock keeps delivery in that order across threads
        self._notifications: deque[tuple[Node, list[str], bool]] = deque()
        self._notify_lock = threading.RLock()

    # -- reads --------------------------------------------------------------------

    @property
    def canonical_tree(self) -> Node:
        with self._lock:
            return self._canonical

    @property
    def display_tree(self) -> Node:
        with self._lock:
            return self._replay(self._canonical, self._overlay)

    @property
    def overlay(self) -> list[OverlayEntry]:
        with self._lock:
            return list(self._overlay)

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return PipelineState.PENDING if self._overlay else PipelineState.IDLE

    # -- internals ----------------------------------------------------------------

    @staticmethod
    def _replay(tree: Node, entries: Sequence[OverlayEntry]) -> Node:
        current = tree
        for entry in entries:
            updated = entry.edit.apply(current)
            if updated is None:
                # root deletion is rejected at commit time; keep the last good tree
                continue
            current = updated
        return current

    def _check(self, candidate: Optional[Node]) -> Node:
        if candidate is None:
            raise ValidationFailed(["root: the root component cannot be deleted"])
        result = validate_tree(candidate, self.registry)
        if not result.valid:
            raise ValidationFailed(result.errors)
        return candidate

    def _cancel_timer_locked(self) -> None:
        # bumping the generation turns an already-fired callback into a no-op
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm_timer_locked(self) -> None:
        self._cancel_timer_locked()
        generation = self._generation
        self._timer = self.scheduler.schedule(self.debounce_seconds, lambda: self._on_timer(generation))

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("pipeline.timer_stale", extra={"generation": generation})
                return
            self._timer = None
            self._enqueue_locked(self._fold_locked(), raise_errors=False)
        self._drain_notifications()

    def _fold_locked(self) -> Optional[tuple[Node, list[str]]]:
        if not self._overlay:
            return None
        entries, self._overlay = self._overlay, []
        descriptions = [entry.description for entry in entries]
        candidate = self._replay(self._canonical, entries)
        result = validate_tree(candidate, self.registry)
        if not result.valid:
            logger.error(
                "pipeline.fold_rejected",
                extra={"errors": result.errors, "descriptions": descriptions},
            )
            return None
        if candidate is self._canonical:
            logger.debug("pipeline.fold_noop", extra={"edits": len(entries)})
            return None
        self._canonical = candidate
        self.history.push(candidate)
        logger.info("pipeline.fold", extra={"edits": len(entries), "descriptions": descriptions})
        return candidate, descriptions

    def _enqueue_locked(self, payload: Optional[tuple[Node, list[str]]], *, raise_errors: bool) -> None:
        if payload is None or self.on_commit is None:
            return
        tree, descriptions = payload
        self._notifications.append((tree, descriptions, raise_errors))

    def _drain_notifications(self) -> None:
        """
        Deliver queued commits to `on_commit` oldest first. Whichever thread gets
        here first delivers everything queued so far, so a timer fold that lost
        the race to a later flush is still reported before it.
        """
        with self._notify_lock:
            while True:
                with self._lock:
                    if not self._notifications:
                        return
                    tree, descriptions, raise_errors = self._notifications.popleft()
                callback = self.on_commit
                if callback is None:
                    continue
                try:
                    callback(tree, descriptions)
                except Exception:
                    logger.exception("pipeline.on_commit_failed", extra={"descriptions": descriptions})
                    if raise_errors:
                        raise

    # -- writes -------------------------------------------------------------------

    def commit_edit(self, edit: Edit, description: str) -> Node:
        """
        Validate `edit` against the current display tree, stage it in the overlay
        and (re)arm the debounce timer. Returns the new display tree.
        """
        with self._lock:
            display = self._check(edit.apply(self._replay(self._canonical, self._overlay)))
            self._overlay.append(OverlayEntry(edit=edit, description=description, timestamp=time.time()))
            self._arm_timer_locked()
            return display

    def update(self, node_id: str, patch: PatchLike, description: str = "Update component") -> Node:
        return self.commit_edit(UpdateEdit(node_id, to_patch(patch)), description)

    def delete(self, node_id: str, description: str = "Delete component") -> Node:
        return self.commit_edit(DeleteEdit(node_id), description)

    def move(self, node_id: str, direction: Direction, description: Optional[str] = None) -> Node:
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
        return self.commit_edit(MoveEdit(node_id, direction), description or f"Move component {direction}")

    def duplicate(self, node_id: str, description: str = "Duplicate component") -> Node:
        with self._lock:
            source = find_by_id(self.display_tree, node_id)
            new_ids = tuple(generate_component_id(str(node.get("component"))) for node in walk_tree(source))
            return self.commit_edit(DuplicateEdit(node_id, new_ids), description)

    def insert(
        self,
        parent_id: str,
        node: Node,
        index: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Node:
        edit = InsertEdit(parent_id, deepcopy(node), index, self.registry)
        with self._lock:
            parent = find_by_id(self.display_tree, parent_id)
            if parent is not None and not self.registry.can_have_children(str(parent.get("component"))):
                raise ValidationFailed([f"{parent_id}: Component '{parent.get('component')}' cannot have children"])
            return self.commit_edit(edit, description or f"Add {node.get('component', 'component')}")

    def flush(self) -> Node:
        """Fold pending edits now. Safe to call repeatedly; returns the canonical tree."""
        with self._lock:
            self._cancel_timer_locked()
            self._enqueue_locked(self._fold_locked(), raise_errors=True)
            canonical = self._canonical
        self._drain_notifications()
        return canonical

    def discard(self) -> int:
        """Drop pending edits without touching canonical state. Returns how many were dropped."""
        with self._lock:
            self._cancel_timer_locked()
            dropped = len(self._overlay)
            self._overlay = []
        if dropped:
            logger.info("pipeline.discard", extra={"edits": dropped})
        return dropped

    def apply_discrete(self, operation: Callable[[Node], Optional[Node]], description: str) -> Node:
        """
        Apply a one-shot change (AI patch, undo target, ...) directly to canonical
        state. Pending overlay edits are left staged and replay on top.
        """
        with self._lock:
            candidate = self._check(operation(self._canonical))
            if candidate is self._canonical:
                return candidate
            self._canonical = candidate
            self.history.push(candidate)
            logger.info("pipeline.apply_discrete", extra={"description": description})
            self._enqueue_locked((candidate, [description]), raise_errors=True)
        self._drain_notifications()
        return candidate

    def _step_history(self, step: Callable[[], Optional[Node]], description: str) -> Optional[Node]:
        self.flush()
        with self._lock:
            target = step()
            if target is None:
                return None
            self._canonical = target
            self._enqueue_locked((target, [description]), raise_errors=True)
        logger.info("pipeline.history_step", extra={"description": description})
        self._drain_notifications()
        return target

    def undo(self) -> Optional[Node]:
        return self._step_history(self.history.undo, "Undo")

    def redo(self) -> Optional[Node]:
        return self._step_history(self.history.redo, "Redo")
