import asyncio

import pytest

from conftest import FakeRefiner
from mailtree.editor.session import EditorSession
from mailtree.errors import AdapterFailure, PathInvalid, PersistenceError, ValidationFailed
from mailtree.schemas.email import Patch, RefinementContext
from mailtree.tree.operations import find_by_id


def _session(tree, settings, store, scheduler, **kwargs):
    return EditorSession(tree, settings, store, scheduler=scheduler, debounce_seconds=0.5, **kwargs)


def test_race_scenario_save_contains_both_edits(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)

    session.pipeline.update("h1", {"content": "A"}, "edit A")
    manual_scheduler.advance(0.6)
    session.pipeline.update("t1", {"content": "B"}, "edit B")
    manual_scheduler.advance(0.1)
    session.pipeline.flush()
    saved_id = session.save()

    saved_tree, saved_settings = memory_store.saved[-1]
    assert saved_id == "rev-1"
    assert find_by_id(saved_tree, "h1")["content"] == "A"
    assert find_by_id(saved_tree, "t1")["content"] == "B"
    assert session.pipeline.canonical_tree == saved_tree
    assert session.pipeline.overlay == []
    assert saved_settings is global_settings
    assert not session.is_dirty


def test_save_flushes_pending_edits(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    session.pipeline.update("t1", {"content": "unsaved"})

    session.save()

    assert find_by_id(memory_store.saved[0][0], "t1")["content"] == "unsaved"
    assert session.last_saved is session.pipeline.canonical_tree
    assert session.last_saved_id == "rev-1"


def test_failed_save_keeps_last_saved(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    session.pipeline.update("t1", {"content": "x"})
    memory_store.fail_with = RuntimeError("disk full")

    with pytest.raises(PersistenceError, match="disk full"):
        session.save()

    assert session.last_saved is scenario_tree
    assert session.last_saved_id is None
    assert session.is_dirty


def test_is_dirty_tracks_overlay_and_canonical(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    assert not session.is_dirty

    session.pipeline.update("t1", {"content": "x"})
    assert session.is_dirty

    session.discard()
    assert not session.is_dirty

    new_session = _session(scenario_tree, global_settings, memory_store, manual_scheduler, persisted=False)
    assert new_session.is_dirty


def test_navigate_away_saves_only_when_dirty(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    assert session.navigate_away() is None
    assert memory_store.saved == []

    session.pipeline.delete("t1")
    assert session.navigate_away() == "rev-1"
    assert find_by_id(memory_store.saved[0][0], "t1") is None


def test_render_preview_shows_pending_and_send_flushes(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    session.pipeline.update("h1", {"content": "Preview me"})

    assert ">Preview me</h1>" in session.render_preview().html
    assert find_by_id(session.pipeline.canonical_tree, "h1")["content"] == "Hi"

    sent = session.render_for_send()
    assert ">Preview me</h1>" in sent.html
    assert sent.plain_text == "Preview me\n\nbody"
    assert session.pipeline.overlay == []


def test_refine_component_applies_patch(scenario_tree, global_settings, memory_store, manual_scheduler):
    refiner = FakeRefiner(Patch(content="Refined", props={"style": {"fontSize": 20}}))
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler, refiner=refiner)
    session.pipeline.update("h1", {"content": "pending"})

    tree = asyncio.run(session.refine_component("t1", "make it punchier", RefinementContext(emailSubject="Hello")))

    node = find_by_id(tree, "t1")
    assert node["content"] == "Refined"
    assert node["props"]["style"] == {"color": "#111111", "fontSize": 20}
    assert find_by_id(tree, "h1")["content"] == "pending"

    snapshot, prompt, context = refiner.calls[0]
    assert snapshot["id"] == "t1"
    assert prompt == "make it punchier"
    assert context.emailSubject == "Hello"
    assert context.componentPath == "root.children[0].children[1]"
    assert context.componentPosition == "Text #1 (of 1 total Text)"
    assert context.siblingContents == ["pending"]
    assert context.globalSettings == global_settings


def test_stale_ai_apply_rejected(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    session.refiner = FakeRefiner({"content": "X"}, before_return=lambda: session.pipeline.delete("t1"))

    with pytest.raises(PathInvalid):
        asyncio.run(session.refine_component("t1", "rewrite"))

    canonical = session.pipeline.canonical_tree
    assert find_by_id(canonical, "t1") is None
    assert find_by_id(canonical, "h1")["content"] == "Hi"
    assert session.pipeline.overlay == []


def test_ai_apply_rejected_when_position_now_holds_other_node(
    scenario_tree, global_settings, memory_store, manual_scheduler
):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)

    def _insert_before():
        session.pipeline.insert("s1", {"id": "t0", "component": "Text", "content": "new"}, index=1)

    session.refiner = FakeRefiner({"content": "X"}, before_return=_insert_before)

    with pytest.raises(PathInvalid, match="expected node 't1'"):
        asyncio.run(session.refine_component("t1", "rewrite"))

    canonical = session.pipeline.canonical_tree
    assert find_by_id(canonical, "t0")["content"] == "new"
    assert find_by_id(canonical, "t1")["content"] == "body"


def test_ai_patch_that_breaks_tree_is_rejected(scenario_tree, global_settings, memory_store, manual_scheduler):
    refiner = FakeRefiner({"props": {"style": {"color": "#000000"}}})
    tree = {
        "id": "c",
        "component": "Container",
        "children": [{"id": "b", "component": "Button", "props": {"href": "https://x.test"}, "content": "Go"}],
    }
    session = _session(tree, global_settings, memory_store, manual_scheduler, refiner=refiner)
    refiner.patch = {"props": {"href": ""}}

    with pytest.raises(ValidationFailed):
        asyncio.run(session.refine_component("b", "remove the link"))
    assert session.pipeline.canonical_tree is tree


def test_refine_requires_refiner_and_existing_node(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    with pytest.raises(AdapterFailure):
        asyncio.run(session.refine_component("t1", "x"))

    session.refiner = FakeRefiner({"content": "X"})
    with pytest.raises(PathInvalid):
        asyncio.run(session.refine_component("ghost", "x"))


def test_undo_redo_through_session(scenario_tree, global_settings, memory_store, manual_scheduler):
    session = _session(scenario_tree, global_settings, memory_store, manual_scheduler)
    session.pipeline.update("h1", {"content": "v2"})
    session.save()

    assert session.undo() is scenario_tree
    assert session.is_dirty
    assert find_by_id(session.redo(), "h1")["content"] == "v2"
    assert not session.is_dirty
