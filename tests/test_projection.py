"""Tests for flattening and visibility of a view's forest."""

import pytest

from tabforest.core.projection import (
    document_order,
    flatten,
    is_visible,
    iter_flat,
    render_tree,
    subtree,
    subtree_size,
    visible_entries,
)
from tabforest.core.tree_store import default_view_id
from tabforest.types import FlatEntry, NodeNotFound

VIEW = default_view_id(1)


@pytest.fixture
def forest(mutator, tree):
    """r1 -> (a -> (a1, a2), b), r2"""
    mutator.attach(1, 1, title="r1")
    mutator.attach(2, 1, opener_tab_id=1, title="a")
    mutator.attach(3, 1, opener_tab_id=2, title="a1")
    mutator.attach(4, 1, opener_tab_id=2, title="a2")
    mutator.attach(5, 1, opener_tab_id=1, title="b")
    mutator.attach(6, 1, title="r2")
    return {tree.get_node_by_tab_id(t).title: tree.get_node_by_tab_id(t).id for t in range(1, 7)}


class TestFlatten:
    def test_preorder_with_depth(self, tree, forest):
        entries = flatten(tree, VIEW)
        assert [(e.node_id, e.depth) for e in entries] == [
            (forest["r1"], 0),
            (forest["a"], 1),
            (forest["a1"], 2),
            (forest["a2"], 2),
            (forest["b"], 1),
            (forest["r2"], 0),
        ]
        assert all(e.visible for e in entries)

    def test_collapsed_parent_hides_subtree_only(self, tree, forest):
        tree.set_expanded(forest["a"], False)
        visible = {e.node_id: e.visible for e in flatten(tree, VIEW)}
        assert visible[forest["a"]] is True
        assert visible[forest["a1"]] is False
        assert visible[forest["a2"]] is False
        assert visible[forest["b"]] is True
        assert tree.get_node(forest["a1"]).is_expanded is True

    def test_visibility_uses_full_ancestor_chain(self, tree, forest):
        tree.set_expanded(forest["r1"], False)
        assert not is_visible(tree, forest["a1"])
        tree.set_expanded(forest["r1"], True)
        tree.set_expanded(forest["a"], False)
        assert not is_visible(tree, forest["a1"])
        tree.set_expanded(forest["a"], True)
        assert is_visible(tree, forest["a1"])

    def test_expanding_restores_previous_subtree_state(self, tree, forest):
        tree.set_expanded(forest["a"], False)
        tree.set_expanded(forest["r1"], False)
        tree.set_expanded(forest["r1"], True)
        hidden = [e.node_id for e in flatten(tree, VIEW) if not e.visible]
        assert hidden == [forest["a1"], forest["a2"]]

    def test_visible_entries(self, tree, forest):
        tree.set_expanded(forest["r1"], False)
        assert [e.node_id for e in visible_entries(tree, VIEW)] == [forest["r1"], forest["r2"]]

    def test_iteration_is_restartable(self, tree, forest):
        walk = iter_flat(tree, VIEW)
        first = next(walk)
        assert first == FlatEntry(forest["r1"], 0, True)
        assert list(iter_flat(tree, VIEW)) == flatten(tree, VIEW)

    def test_empty_view(self, tree):
        tree.ensure_window(1)
        assert flatten(tree, VIEW) == []

    def test_unknown_view(self, tree):
        with pytest.raises(NodeNotFound):
            flatten(tree, "nope")


class TestSubtree:
    def test_subtree_preorder(self, tree, forest):
        assert subtree(tree, forest["a"]) == [forest["a"], forest["a1"], forest["a2"]]
        assert subtree_size(tree, forest["r1"]) == 5

    def test_document_order(self, tree, forest):
        assert document_order(tree, VIEW) == [forest[k] for k in ("r1", "a", "a1", "a2", "b", "r2")]


class TestRender:
    def test_render_marks_collapsed(self, tree, forest):
        tree.set_expanded(forest["a"], False)
        text = render_tree(tree, VIEW)
        lines = text.splitlines()
        assert lines[0].startswith("- r1")
        assert lines[1].startswith("  + a")
        assert "a1" not in text
        assert "(hidden)" in render_tree(tree, VIEW, show_hidden=True)
