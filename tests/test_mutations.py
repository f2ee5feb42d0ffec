"""Tests for TreeMutator attach/detach/reparent/move/expand."""

import pytest

from tabforest.config import load_config
from tabforest.core.mutations import TreeMutator
from tabforest.core.tree_store import TreeStore, default_view_id
from tabforest.types import CrossViewReparent, CycleDetected, DuplicateBackingTab, GroupInfo, NodeNotFound

VIEW = default_view_id(1)


def _open(mutator: TreeMutator, tab_id: int, opener: int | None = None, url: str = "https://example.com",
          user_initiated: bool = False, title: str = ""):
    return mutator.attach(tab_id, 1, url=url, opener_tab_id=opener, user_initiated=user_initiated, title=title)


def _ids(tree: TreeStore, tab_ids: list[int]) -> list[str]:
    return [tree.get_node_by_tab_id(t).id for t in tab_ids]


def _roots(tree: TreeStore) -> list[int]:
    return [tree.get_node(n).backing_tab_id for n in tree.roots_of(VIEW)]


def _children(tree: TreeStore, tab_id: int) -> list[int]:
    node = tree.get_node_by_tab_id(tab_id)
    return [tree.get_node(c).backing_tab_id for c in node.children]


class TestAttach:
    def test_first_tab_becomes_root(self, mutator, tree):
        node = _open(mutator, 1)
        assert node.parent_id is None
        assert tree.roots_of(VIEW) == [node.id]
        assert node.is_expanded is True

    def test_link_opened_child_scenario(self, mutator, tree):
        root = _open(mutator, 1)
        child = _open(mutator, 2, opener=1)
        assert tree.children_of(root.id) == [child.id]
        assert tree.get_node(root.id).is_expanded is True

        child2 = _open(mutator, 3, opener=1)
        assert tree.children_of(root.id) == [child.id, child2.id]

    def test_system_url_with_opener_appends_root(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2)
        node = _open(mutator, 3, opener=1, url="chrome://settings")
        assert node.parent_id is None
        assert _roots(tree) == [1, 2, 3]
        assert _children(tree, 1) == []

    def test_user_initiated_with_opener_uses_manual_policy(self, mutator, tree):
        _open(mutator, 1)
        node = _open(mutator, 2, opener=1, user_initiated=True)
        assert node.parent_id is None

    def test_end_placement_moves_host_tab_to_end(self, mutator, host):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        _open(mutator, 3, user_initiated=True)
        assert host.moved == [(1, -1), (3, -1)]

    def test_system_url_moved_to_end_on_host(self, mutator, host, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1, url="chrome://newtab")
        assert host.moved == [(1, -1), (2, -1)]
        assert tree.get_window(1).tab_order == [1, 2]

    def test_auto_expand_only_touches_the_parent(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        _open(mutator, 3, opener=2)
        _open(mutator, 4, opener=3)
        n1, n2, n3, n4 = _ids(tree, [1, 2, 3, 4])
        mutator.toggle_expand(n1)
        mutator.toggle_expand(n3)
        assert tree.get_node(n3).is_expanded is False

        _open(mutator, 5, opener=3)

        assert tree.get_node(n3).is_expanded is True
        assert tree.get_node(n1).is_expanded is False
        assert tree.get_node(n2).is_expanded is True
        assert tree.get_node(n4).is_expanded is True

    def test_duplicate_tab_rejected(self, mutator, tree):
        _open(mutator, 1)
        with pytest.raises(DuplicateBackingTab):
            _open(mutator, 1)
        assert len(tree.state.nodes) == 1

    def test_opener_in_other_view_is_ignored(self, mutator, tree):
        _open(mutator, 1)
        other = tree.add_view(1, "Other")
        tree.set_active_view(1, other.id)
        node = _open(mutator, 2, opener=1)
        assert node.view_id == other.id
        assert node.parent_id is None

    def test_manual_child_nests_under_last_active_tab(self, tree, host):
        config = load_config(config_dict={"placement": {"manual_opened": "child"}})
        mutator = TreeMutator(tree, config, host)
        _open(mutator, 1)
        _open(mutator, 2)
        tree.get_window(1).last_active_tab_id = 1
        node = _open(mutator, 3, user_initiated=True)
        assert node.parent_id == tree.get_node_by_tab_id(1).id

    def test_sibling_policy(self, tree, host):
        config = load_config(config_dict={"placement": {"link_opened": "sibling"}})
        mutator = TreeMutator(tree, config, host)
        _open(mutator, 1)
        _open(mutator, 2)
        _open(mutator, 3, opener=1)
        assert _roots(tree) == [1, 3, 2]

    def test_duplicate_tab_leaves_host_order_alone(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2)
        with pytest.raises(DuplicateBackingTab):
            mutator.attach(2, 1, index=0)
        assert tree.get_window(1).tab_order == [1, 2]

    def test_background_tab_marked_unread(self, mutator, tree):
        mutator.attach(1, 1, active=False)
        assert tree.is_unread(1)
        mutator.detach(1)
        assert not tree.is_unread(1)

    def test_attach_with_group_info(self, mutator, tree):
        node = mutator.attach(1000, 1, group_info=GroupInfo("Moved", "#000000"))
        assert node.is_group
        assert tree.get_node(node.id).group_info.name == "Moved"


class TestDuplicatePlacement:
    def test_duplicate_is_sibling_of_source(self, mutator, tree):
        _open(mutator, 1, url="https://a.example")
        _open(mutator, 2, opener=1, url="https://b.example")
        mutator.expect_duplicate(2)
        node = _open(mutator, 3, opener=2, url="https://b.example")
        assert node.parent_id == tree.get_node_by_tab_id(1).id
        assert _children(tree, 1) == [2, 3]

    def test_duplicate_in_other_window_is_not_matched(self, mutator, tree):
        _open(mutator, 1, url="https://a.example")
        mutator.expect_duplicate(1)
        node = mutator.attach(2, 2, url="https://a.example")
        assert node.window_id == 2
        assert node.parent_id is None
        _open(mutator, 3, url="https://a.example")
        assert _roots(tree) == [1, 3]

    def test_closed_source_cancels_duplicate(self, mutator, tree):
        _open(mutator, 1, url="https://a.example")
        _open(mutator, 2, url="https://b.example")
        mutator.expect_duplicate(1)
        mutator.detach(1)
        _open(mutator, 3, url="https://a.example")
        assert _roots(tree) == [2, 3]

    def test_empty_url_never_matches(self, mutator, tree):
        _open(mutator, 1, url="")
        _open(mutator, 2, url="https://b.example")
        mutator.expect_duplicate(1)
        _open(mutator, 3, url="")
        assert _roots(tree) == [1, 2, 3]

    def test_unknown_source_rejected(self, mutator):
        with pytest.raises(NodeNotFound):
            mutator.expect_duplicate(42)


class TestDetach:
    def test_unknown_tab_is_noop(self, mutator, tree):
        _open(mutator, 1)
        assert mutator.detach(99) is None
        assert len(tree.state.nodes) == 1

    def test_detach_leaf(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        assert mutator.detach(2) == []
        assert _children(tree, 1) == []
        assert tree.check_invariants() == []

    def test_root_children_promoted_in_place(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2)
        _open(mutator, 3)
        _open(mutator, 4, opener=2)
        _open(mutator, 5, opener=2)
        mutator.detach(2)
        assert _roots(tree) == [1, 4, 5, 3]
        assert tree.get_node_by_tab_id(4).parent_id is None

    def test_inner_children_promoted_to_grandparent(self, mutator, tree):
        _open(mutator, 1)
        for tab in (2, 3, 4):
            _open(mutator, tab, opener=1)
        _open(mutator, 5, opener=3)
        _open(mutator, 6, opener=3)
        mutator.detach(3)
        assert _children(tree, 1) == [2, 5, 6, 4]
        parent_id = tree.get_node_by_tab_id(1).id
        assert tree.get_node_by_tab_id(5).parent_id == parent_id
        assert tree.check_invariants() == []

    def test_promoted_subtrees_stay_intact(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        _open(mutator, 3, opener=2)
        mutator.detach(1)
        assert _roots(tree) == [2]
        assert _children(tree, 2) == [3]

    def test_close_all_removes_subtree(self, tree, host):
        config = load_config(config_dict={"detach": {"child_behavior": "close_all"}})
        mutator = TreeMutator(tree, config, host)
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        _open(mutator, 3, opener=2)
        _open(mutator, 4)

        closed = mutator.detach(1)

        assert closed == [2, 3]
        assert host.closed == [2, 3]
        assert _roots(tree) == [4]
        assert mutator.detach(2) is None
        assert mutator.detach(3) is None


class TestReparentAndMove:
    def test_reparent_into_other_node(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2)
        _open(mutator, 3, opener=2)
        n1, n2 = _ids(tree, [1, 2])
        mutator.reparent(n2, n1, 0)
        assert _roots(tree) == [1]
        assert _children(tree, 1) == [2]
        assert _children(tree, 2) == [3]

    def test_reparent_to_root(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        mutator.reparent(tree.get_node_by_tab_id(2).id, None, 0)
        assert _roots(tree) == [2, 1]

    def test_reparent_under_self_rejected(self, mutator, tree):
        node = _open(mutator, 1)
        with pytest.raises(CycleDetected):
            mutator.reparent(node.id, node.id)

    def test_reparent_under_descendant_rejected(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        _open(mutator, 3, opener=2)
        n1, n3 = _ids(tree, [1, 3])
        with pytest.raises(CycleDetected):
            mutator.reparent(n1, n3)
        assert _roots(tree) == [1]
        assert tree.check_invariants() == []

    def test_reparent_across_views_rejected(self, mutator, tree):
        _open(mutator, 1)
        other = tree.add_view(1, "Other")
        tree.set_active_view(1, other.id)
        _open(mutator, 2)
        n1, n2 = _ids(tree, [1, 2])
        with pytest.raises(CrossViewReparent):
            mutator.reparent(n2, n1)

    def test_reparent_unknown_node(self, mutator):
        with pytest.raises(NodeNotFound):
            mutator.reparent("ghost", None)

    def test_move_to_position(self, mutator, tree):
        _open(mutator, 1)
        for tab in (2, 3, 4):
            _open(mutator, tab, opener=1)
        mutator.move_to_position(tree.get_node_by_tab_id(4).id, 0)
        assert _children(tree, 1) == [4, 2, 3]
        mutator.move_to_position(tree.get_node_by_tab_id(4).id, 2)
        assert _children(tree, 1) == [2, 3, 4]

    def test_toggle_expand_never_touches_descendants(self, mutator, tree):
        _open(mutator, 1)
        _open(mutator, 2, opener=1)
        n1, n2 = _ids(tree, [1, 2])
        assert mutator.toggle_expand(n1) is False
        assert tree.get_node(n2).is_expanded is True
        assert mutator.toggle_expand(n1) is True


class TestHostOrder:
    def test_sync_order_follows_host_index(self, mutator, tree):
        for tab in (1, 2, 3):
            mutator.record_tab_position(1, tab, None)
            _open(mutator, tab, user_initiated=True)
        mutator.record_tab_position(1, 3, 0)
        mutator.sync_order(3)
        assert _roots(tree) == [3, 1, 2]

    def test_unknown_siblings_keep_their_slot(self, mutator, tree):
        for tab in (1, 2, 3):
            _open(mutator, tab, user_initiated=True)
        mutator.forget_tab_position(2)
        mutator.record_tab_position(1, 3, None)
        mutator.record_tab_position(1, 1, None)
        mutator.sync_order(1)
        assert _roots(tree) == [3, 2, 1]
