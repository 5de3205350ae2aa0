import pytest

from mailtree.renderer.wrapper import (
    MAIN_CONTAINER_ID,
    PREVIEW_ID,
    add_preview,
    create_wrapper,
    extract_preview,
    get_main_container,
    insert_content,
    is_valid_wrapper,
)
from mailtree.schemas.email import GlobalSettings
from mailtree.tree.validate import validate_tree


def test_create_wrapper_uses_settings():
    wrapper = create_wrapper(GlobalSettings(fontFamily="Georgia, serif", backgroundColor="#fafafa", maxWidth="640px"))
    body = wrapper["children"][1]
    assert body["props"]["style"]["fontFamily"] == "Georgia, serif"
    assert body["props"]["style"]["backgroundColor"] == "#fafafa"
    assert get_main_container(wrapper)["props"]["style"]["maxWidth"] == "640px"
    assert is_valid_wrapper(wrapper)
    assert validate_tree(wrapper).valid


def test_insert_content_keeps_order_and_does_not_mutate(global_settings):
    wrapper = create_wrapper(global_settings)
    content = [
        {"id": "a", "component": "Text", "content": "one"},
        {"id": "b", "component": "Text", "content": "two"},
    ]
    tree = insert_content(wrapper, content)
    assert [child["id"] for child in get_main_container(tree)["children"]] == ["a", "b"]
    assert get_main_container(wrapper)["children"] == []
    assert get_main_container(tree)["id"] == MAIN_CONTAINER_ID


def test_add_preview_is_first_in_head_and_replaces_existing(global_settings):
    tree = create_wrapper(global_settings)
    tree["children"][0]["children"].append(
        {"id": "font", "component": "Font", "props": {"fontFamily": "Inter"}}
    )
    tree = add_preview(tree, "first")
    tree = add_preview(tree, "second")
    head_children = tree["children"][0]["children"]
    assert [child["id"] for child in head_children] == [PREVIEW_ID, "font"]
    assert head_children[0]["content"] == "second"


def test_extract_preview():
    nodes = [{"id": "x", "component": "Text"}, {"id": "p", "component": "Preview", "content": "hello"}]
    assert extract_preview(nodes)["id"] == "p"
    assert extract_preview(nodes[:1]) is None


def test_is_valid_wrapper_rejects_other_shapes(scenario_tree):
    assert not is_valid_wrapper(scenario_tree)
    assert not is_valid_wrapper({"id": "h", "component": "Html", "children": []})


def test_get_main_container_requires_slot(scenario_tree):
    with pytest.raises(ValueError, match="Container"):
        get_main_container(scenario_tree)
