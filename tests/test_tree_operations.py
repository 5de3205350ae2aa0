from copy import deepcopy

import pytest

from mailtree.errors import PathInvalid, ValidationFailed
from mailtree.tree.operations import (
    can_insert_component,
    count_components,
    delete_by_id,
    duplicate_component,
    find_by_id,
    find_by_path,
    flatten_component_tree,
    get_breadcrumbs,
    get_component_depth,
    get_component_index,
    get_parent,
    get_siblings,
    get_tree_stats,
    insert_component,
    merge_patch,
    move_component,
    update_by_id,
    update_by_path,
    walk_tree,
)
from mailtree.tree.paths import path_of


def _ids(tree):
    return [node["id"] for node in walk_tree(tree)]


def test_find_by_id_and_by_path_agree(scenario_tree):
    for node_id in _ids(scenario_tree):
        node = find_by_id(scenario_tree, node_id)
        assert node is not None
        assert find_by_path(scenario_tree, path_of(scenario_tree, node_id)) is node


def test_update_by_id_sets_content_and_leaves_input_untouched(scenario_tree):
    original = deepcopy(scenario_tree)
    result = update_by_id(scenario_tree, "h1", {"content": "Bye"})

    assert find_by_id(result, "h1")["content"] == "Bye"
    assert scenario_tree == original
    # everything else is structurally unchanged
    assert find_by_id(result, "t1") == find_by_id(original, "t1")
    assert find_by_id(result, "h1")["props"] == find_by_id(original, "h1")["props"]


def test_update_by_id_merges_style_one_level(scenario_tree):
    result = update_by_id(scenario_tree, "t1", {"props": {"style": {"fontSize": 18}}})
    assert find_by_id(result, "t1")["props"]["style"] == {"color": "#111111", "fontSize": 18}


def test_update_by_id_replaces_non_style_props(scenario_tree):
    result = update_by_id(scenario_tree, "h1", {"props": {"as": "h2"}})
    assert find_by_id(result, "h1")["props"] == {"as": "h2"}


def test_update_by_id_absent_returns_same_tree(scenario_tree):
    assert update_by_id(scenario_tree, "nope", {"content": "x"}) is scenario_tree


def test_update_rejects_malformed_patch(scenario_tree):
    with pytest.raises(ValidationFailed) as excinfo:
        update_by_id(scenario_tree, "h1", {"children": []})
    assert any(error.startswith("patch.children") for error in excinfo.value.errors)

    with pytest.raises(ValidationFailed, match="expected an object"):
        update_by_id(scenario_tree, "h1", "content")


def test_update_by_path(scenario_tree):
    result = update_by_path(scenario_tree, "root.children[0].children[1]", {"content": "new body"})
    assert find_by_id(result, "t1")["content"] == "new body"


def test_update_by_path_unresolved_raises(scenario_tree):
    with pytest.raises(PathInvalid):
        update_by_path(scenario_tree, "root.children[4]", {"content": "x"})


def test_merge_patch_copies(scenario_tree):
    node = find_by_id(scenario_tree, "t1")
    merged = merge_patch(node, {"props": {"style": {"color": "#000000"}}})
    assert merged["props"]["style"]["color"] == "#000000"
    assert node["props"]["style"]["color"] == "#111111"


def test_delete_removes_subtree(scenario_tree):
    before = count_components(scenario_tree)
    subtree_size = count_components(find_by_id(scenario_tree, "s1"))

    result = delete_by_id(scenario_tree, "s1")

    assert find_by_id(result, "s1") is None
    assert find_by_id(result, "t1") is None
    assert count_components(result) == before - subtree_size
    assert find_by_id(scenario_tree, "s1") is not None


def test_delete_root_yields_empty_tree(scenario_tree):
    assert delete_by_id(scenario_tree, "c1") is None


def test_delete_absent_returns_same_tree(scenario_tree):
    assert delete_by_id(scenario_tree, "ghost") is scenario_tree


def test_move_component_swaps_siblings(scenario_tree):
    result = move_component(scenario_tree, "t1", "up")
    assert [child["id"] for child in find_by_id(result, "s1")["children"]] == ["t1", "h1"]


def test_move_at_boundary_is_noop(scenario_tree):
    assert move_component(scenario_tree, "h1", "up") == scenario_tree
    assert move_component(scenario_tree, "t1", "down") == scenario_tree
    assert move_component(scenario_tree, "c1", "down") == scenario_tree


def test_move_rejects_bad_direction(scenario_tree):
    with pytest.raises(ValueError, match="direction"):
        move_component(scenario_tree, "t1", "left")


def test_duplicate_inserts_copy_with_fresh_ids(scenario_tree):
    parent_before = len(find_by_id(scenario_tree, "c1")["children"])

    result = duplicate_component(scenario_tree, "s1")

    children = find_by_id(result, "c1")["children"]
    assert len(children) == parent_before + 1
    original, clone = children[0], children[1]

    def _shape(node):
        return (
            node["component"],
            node.get("props"),
            node.get("content"),
            [_shape(child) for child in node.get("children", [])],
        )

    assert _shape(original) == _shape(clone)
    assert set(_ids(original)).isdisjoint(_ids(clone))


def test_duplicate_uses_id_factory_in_preorder(scenario_tree):
    counter = iter(range(100))
    result = duplicate_component(scenario_tree, "s1", id_factory=lambda component: f"{component}-{next(counter)}")
    clone = find_by_id(result, "c1")["children"][1]
    assert _ids(clone) == ["Section-0", "Heading-1", "Text-2"]


def test_insert_component_clamps_index(scenario_tree):
    node = {"id": "new", "component": "Text", "props": {}, "content": "added"}
    result = insert_component(scenario_tree, "s1", node, index=99)
    assert find_by_id(result, "s1")["children"][-1]["id"] == "new"

    result = insert_component(scenario_tree, "s1", node, index=0)
    assert find_by_id(result, "s1")["children"][0]["id"] == "new"


def test_insert_into_missing_parent_is_noop(scenario_tree):
    node = {"id": "new", "component": "Text", "props": {}}
    assert insert_component(scenario_tree, "ghost", node) is scenario_tree


def test_insert_under_leaf_is_noop(scenario_tree):
    original = deepcopy(scenario_tree)
    node = {"id": "new", "component": "Text", "props": {}, "content": "nested"}

    assert insert_component(scenario_tree, "t1", node) is scenario_tree
    assert insert_component(scenario_tree, "h1", node, index=0) is scenario_tree
    assert scenario_tree == original


def test_can_insert_component(scenario_tree):
    assert can_insert_component(scenario_tree, "s1", "Text")
    assert not can_insert_component(scenario_tree, "t1", "Text")
    assert not can_insert_component(scenario_tree, "s1", "Marquee")
    assert not can_insert_component(scenario_tree, "ghost", "Text")


def test_navigation_helpers(scenario_tree):
    assert get_parent(scenario_tree, "t1")["id"] == "s1"
    assert get_parent(scenario_tree, "c1") is None
    assert [node["id"] for node in get_siblings(scenario_tree, "t1")] == ["h1"]
    assert get_component_index(scenario_tree, "t1") == 1
    assert get_component_index(scenario_tree, "ghost") == -1
    assert get_component_depth(scenario_tree, "t1") == 2
    assert get_breadcrumbs(scenario_tree, "t1") == ["Container", "Section", "Text"]
    assert get_breadcrumbs(scenario_tree, "ghost") == []


def test_tree_stats(scenario_tree):
    stats = get_tree_stats(scenario_tree)
    assert stats.total_components == 4
    assert stats.max_depth == 2
    assert stats.component_types == {"Container": 1, "Section": 1, "Heading": 1, "Text": 1}
    assert stats.editable_components == 4


def test_flatten_component_tree_lists_editable_nodes(email_tree):
    elements = flatten_component_tree(email_tree)
    ids = [element.id for element in elements]
    assert "hero" in ids and "cta" in ids
    assert "html-root" not in ids
    hero = next(element for element in elements if element.id == "hero")
    assert find_by_path(email_tree, hero.path)["id"] == "hero"
    assert hero.parent_path == path_of(email_tree, "main-container")
