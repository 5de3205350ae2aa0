from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Optional, Protocol

from mailtree.ai.apply import apply_patch, build_refinement_context
from mailtree.ai.refiner import Refiner
from mailtree.components.registry import ComponentRegistry, default_registry
from mailtree.editor.history import EditorHistory
from mailtree.editor.pipeline import CommitCallback, EditCommitPipeline, Scheduler
from mailtree.errors import AdapterFailure, PathInvalid, PersistenceError
from mailtree.renderer.html import RenderResult, render
from mailtree.schemas.email import GlobalSettings, RefinementContext
from mailtree.tree.paths import path_of, resolve_strict

logger = logging.getLogger(__name__)

Node = dict[str, Any]


class DocumentStore(Protocol):
    def save(self, tree: Node, settings: GlobalSettings) -> str:
        """Persist the tree and return an identifier for the stored revision."""
        ...


class EditorSession:
    """
    One open document in the editor.

    Every read of canonical state that leaves the process (save, send render)
    goes through `pipeline.flush()` first, so pending edits are never lost.
    """

    def __init__(
        self,
        tree: Node,
        settings: GlobalSettings,
        store: DocumentStore,
        refiner: Optional[Refiner] = None,
        *,
        registry: Optional[ComponentRegistry] = None,
        scheduler: Optional[Scheduler] = None,
        debounce_seconds: Optional[float] = None,
        history_limit: Optional[int] = None,
        on_commit: Optional[CommitCallback] = None,
        persisted: bool = True,
    ) -> None:
        self.settings = settings
        self.store = store
        self.refiner = refiner
        self.registry = registry or default_registry()
        self.pipeline = EditCommitPipeline(
            tree,
            registry=self.registry,
            scheduler=scheduler,
            debounce_seconds=debounce_seconds,
            on_commit=on_commit,
            history=EditorHistory(tree, limit=history_limit),
        )
        self.last_saved: Optional[Node] = tree if persisted else None
        self.last_saved_id: Optional[str] = None

    @property
    def is_dirty(self) -> bool:
        if self.pipeline.overlay:
            return True
        return self.pipeline.canonical_tree != self.last_saved

    def save(self) -> str:
        tree = self.pipeline.flush()
        try:
            saved_id = self.store.save(tree, self.settings)
        except Exception as exc:
            logger.exception("session.save_failed", extra={"root_id": tree.get("id")})
            raise PersistenceError(f"Failed to save email tree: {exc}") from exc
        self.last_saved = tree
        self.last_saved_id = saved_id
        logger.info("session.saved", extra={"root_id": tree.get("id"), "saved_id": saved_id})
        return saved_id

    def navigate_away(self) -> Optional[str]:
        if not self.is_dirty:
            return None
        return self.save()

    def discard(self) -> int:
        return self.pipeline.discard()

    def undo(self) -> Optional[Node]:
        return self.pipeline.undo()

    def redo(self) -> Optional[Node]:
        return self.pipeline.redo()

    def render_preview(self, pretty: bool = False) -> RenderResult:
        return render(self.pipeline.display_tree, self.settings, pretty=pretty, registry=self.registry)

    def render_for_send(self) -> RenderResult:
        tree = self.pipeline.flush()
        return render(tree, self.settings, plain_text=True, registry=self.registry)

    async def refine_component(
        self,
        node_id: str,
        prompt: str,
        context: Optional[RefinementContext] = None,
    ) -> Node:
        """
        Ask the refiner for a patch and apply it to canonical state.

        The target is snapshotted by path before the call; if edits made while
        the call was in flight moved or removed it, the apply fails with
        PathInvalid and canonical state is left as it was.
        """
        if self.refiner is None:
            raise AdapterFailure("No refiner configured for this session")

        display = self.pipeline.display_tree
        path = path_of(display, node_id)
        if path is None:
            raise PathInvalid(node_id, reason="component not found")
        snapshot = deepcopy(resolve_strict(display, path))
        full_context = build_refinement_context(display, node_id, context)
        if full_context.globalSettings is None:
            full_context = full_context.model_copy(update={"globalSettings": self.settings})

        patch = await self.refiner.refine(snapshot, prompt, full_context)

        self.pipeline.flush()
        return self.pipeline.apply_discrete(
            lambda tree: apply_patch(tree, path, patch, self.registry, expected_id=node_id),
            f"AI refinement: {prompt}",
        )
