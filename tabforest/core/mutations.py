"""TreeMutator: structural operations on top of the TreeStore."""

from __future__ import annotations

import logging
from dataclasses import replace

from ..types import (
    ChildTabBehavior,
    CrossViewReparent,
    DuplicateBackingTab,
    GroupInfo,
    HostTabs,
    Node,
    NodeNotFound,
    NotAGroup,
    PlacementContext,
    PlacementPolicy,
    TabForestConfig,
    TreeError,
    WindowContext,
    new_node_id,
)
from .group_naming import default_group_name
from .placement import decide_placement, is_system_url
from .projection import document_order, subtree
from .tree_store import TreeStore

logger = logging.getLogger(__name__)


class TreeMutator:
    """Attach, detach, reparent, group and expand/collapse operations.

    Every method is a bounded synchronous step and is meant to be called from
    the engine's single writer. Rejections are raised before anything changes.
    """

    def __init__(
        self,
        store: TreeStore,
        config: TabForestConfig | None = None,
        host: HostTabs | None = None,
    ) -> None:
        self.store = store
        self.config = config or TabForestConfig()
        self.host = host
        self._synthesized_tabs: set[int] = set()  # tabs we opened whose TabCreated is still pending
        self._pending_duplicates: dict[int, tuple[str, int]] = {}  # source tab -> (url, window)

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    def attach(
        self,
        tab_id: int,
        window_id: int,
        url: str = "",
        opener_tab_id: int | None = None,
        user_initiated: bool = False,
        title: str = "",
        view_id: str | None = None,
        sync_host: bool = True,
        index: int | None = None,
        active: bool = True,
        group_info: GroupInfo | None = None,
    ) -> Node | None:
        """Create a node for a newly observed tab and place it.

        ``index`` is the tab's position in the host strip, if known. A tab
        created in the background (``active=False``) is marked unread.
        ``group_info`` carries a group across windows. Returns None when the
        tab is a tab this mutator opened itself (its node already exists).
        """
        if tab_id in self._synthesized_tabs:
            self._synthesized_tabs.discard(tab_id)
            self.record_tab_position(window_id, tab_id, index)
            logger.debug("Skipping creation signal for synthesized tab %s", tab_id)
            return None
        existing = self.store.get_node_by_tab_id(tab_id)
        if existing is not None:
            raise DuplicateBackingTab(f"Tab {tab_id} already backs node {existing.id}")

        window = self.store.ensure_window(window_id)
        view_id = view_id or window.active_view_id
        view = self.store.require_view(view_id)
        if view.window_id != window_id:
            raise CrossViewReparent(f"View {view_id} does not belong to window {window_id}")

        context = self._placement_context(window, view_id, tab_id, url, opener_tab_id, user_initiated)
        placement = decide_placement(context)

        node = Node(
            id=new_node_id(),
            backing_tab_id=tab_id,
            view_id=view_id,
            window_id=window_id,
            parent_id=placement.parent_id,
            group_info=group_info,
            title=title,
            url=url,
        )
        node = self.store.upsert_node(node, placement.index)
        if context.duplicate_of is not None:
            self._pending_duplicates.pop(context.duplicate_of.backing_tab_id, None)

        if placement.parent_id is not None:
            parent = self.store.require_node(placement.parent_id)
            if not parent.is_expanded:
                self.store.set_expanded(parent.id, True)
        if not active:
            self.store.mark_unread(tab_id)
        logger.debug(
            "Attached tab %s as %s (parent=%s, index=%d, policy=%s)",
            tab_id, node.id, placement.parent_id, placement.index, placement.policy.value,
        )

        moved_to_end = sync_host and self.host is not None and placement.policy is PlacementPolicy.END
        # a tab sent to the end of the strip is last in host order too
        self.record_tab_position(window_id, tab_id, None if moved_to_end else index)
        if moved_to_end:
            self.host.move_tab(tab_id, -1)
        return node

    def _placement_context(
        self,
        window: WindowContext,
        view_id: str,
        tab_id: int,
        url: str,
        opener_tab_id: int | None,
        user_initiated: bool,
    ) -> PlacementContext:
        placement_config = self.config.placement
        opener = None
        if opener_tab_id is not None and opener_tab_id != tab_id:
            candidate = self.store.get_node_by_tab_id(opener_tab_id)
            if candidate is not None and candidate.view_id == view_id:
                opener = candidate

        fallback = None
        if window.last_active_tab_id is not None and window.last_active_tab_id != tab_id:
            candidate = self.store.get_node_by_tab_id(window.last_active_tab_id)
            if candidate is not None and candidate.view_id == view_id:
                fallback = candidate

        duplicate_of = None
        duplicate_policy = None
        source_tab_id = self._match_duplicate(window.window_id, url)
        if source_tab_id is not None:
            duplicate_policy = PlacementPolicy(placement_config.duplicate_opened)
            candidate = self.store.get_node_by_tab_id(source_tab_id)
            if candidate is not None and candidate.view_id == view_id:
                duplicate_of = candidate
            else:
                self._pending_duplicates.pop(source_tab_id, None)

        return PlacementContext(
            is_system_url=is_system_url(url, placement_config.system_url_prefixes),
            root_count=len(self.store.require_view(view_id).root_nodes),
            link_opened_policy=PlacementPolicy(placement_config.link_opened),
            manual_opened_policy=PlacementPolicy(placement_config.manual_opened),
            opener=opener,
            opener_index=self.store.index_in_parent(opener.id) if opener else 0,
            link_initiated=opener is not None and not user_initiated,
            fallback_anchor=fallback,
            fallback_index=self.store.index_in_parent(fallback.id) if fallback else 0,
            duplicate_of=duplicate_of,
            duplicate_index=self.store.index_in_parent(duplicate_of.id) if duplicate_of else 0,
            duplicate_policy=duplicate_policy,
        )

    def expect_duplicate(self, tab_id: int) -> Node:
        """Remember that tab_id is about to be duplicated by the host.

        The next new tab in the same window with the same URL is placed by
        the ``duplicate_opened`` policy, anchored on this tab.
        """
        node = self.store.get_node_by_tab_id(tab_id)
        if node is None:
            raise NodeNotFound(f"No node for tab {tab_id}")
        self._pending_duplicates[tab_id] = (node.url, node.window_id)
        return node

    def expect_synthesized(self, tab_id: int) -> None:
        """Skip the creation signal of a tab opened on the tree's behalf."""
        self._synthesized_tabs.add(tab_id)

    def _match_duplicate(self, window_id: int, url: str) -> int | None:
        if not url:
            return None
        for source_tab_id, (source_url, source_window) in self._pending_duplicates.items():
            if source_url == url and source_window == window_id:
                return source_tab_id
        return None

    def detach(self, tab_id: int, child_behavior: ChildTabBehavior | None = None) -> list[int] | None:
        """Remove the node backed by tab_id.

        Children are promoted into the removed node's slot, keeping their
        order. Under the close_all child behavior the whole subtree goes
        instead, and the descendants' tab ids are returned for closing.
        ``child_behavior`` overrides the configured behavior.
        Returns None when no node is backed by tab_id.
        """
        self._synthesized_tabs.discard(tab_id)
        self._pending_duplicates.pop(tab_id, None)
        self.store.mark_read(tab_id)
        self.forget_tab_position(tab_id)
        node = self.store.get_node_by_tab_id(tab_id)
        if node is None:
            logger.debug("Detach of unknown tab %s ignored", tab_id)
            return None

        behavior = ChildTabBehavior(child_behavior or self.config.detach.child_behavior)
        if behavior is ChildTabBehavior.CLOSE_ALL and node.children:
            doomed = subtree(self.store, node.id)
            closed: list[int] = []
            for node_id in reversed(doomed):  # leaves first
                removed = self.store.remove_node(node_id)
                if node_id != node.id:
                    closed.append(removed.backing_tab_id)
            closed.reverse()
            if self.host is not None and closed:
                self.host.close_tabs(closed)
            logger.debug("Detached tab %s with %d descendants", tab_id, len(closed))
            return closed

        self._promote_children(node)
        self.store.remove_node(node.id)
        logger.debug("Detached tab %s (node %s)", tab_id, node.id)
        return []

    def _promote_children(self, node: Node) -> None:
        """Move node's children into node's own slot, right after it."""
        slot = self.store.index_in_parent(node.id)
        for offset, child_id in enumerate(list(node.children)):
            child = self.store.require_node(child_id)
            self.store.upsert_node(replace(child, parent_id=node.parent_id), slot + 1 + offset)

    # ------------------------------------------------------------------
    # Structural commands
    # ------------------------------------------------------------------

    def reparent(self, node_id: str, new_parent_id: str | None, index: int | None = None) -> Node:
        """Move a node (and its subtree) under new_parent_id, or to the roots."""
        node = self.store.require_node(node_id)
        if new_parent_id is not None:
            self.store.require_node(new_parent_id)
        if index is None and node.parent_id == new_parent_id:
            return node
        return self.store.upsert_node(replace(node, parent_id=new_parent_id), index)

    def move_to_position(self, node_id: str, index: int) -> Node:
        """Reorder a node among its current siblings."""
        node = self.store.require_node(node_id)
        return self.store.upsert_node(replace(node), index)

    def toggle_expand(self, node_id: str) -> bool:
        node = self.store.require_node(node_id)
        self.store.set_expanded(node_id, not node.is_expanded)
        return node.is_expanded

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(
        self,
        node_ids: list[str],
        name: str | None = None,
        color: str | None = None,
    ) -> Node:
        """Wrap the selected nodes in a new group node.

        The group takes the slot of the last selected node in document order
        (lifted to its outermost selected ancestor when it has one). Selected
        nodes become direct children of the group in document order.
        """
        if not node_ids:
            raise ValueError("create_group needs at least one node")
        selected_ids = list(dict.fromkeys(node_ids))
        nodes = [self.store.require_node(nid) for nid in selected_ids]
        view_ids = {n.view_id for n in nodes}
        if len(view_ids) != 1:
            raise CrossViewReparent(f"Cannot group nodes from views: {sorted(view_ids)}")
        if self.host is None:
            raise TreeError("No host collaborator available to create a group tab")

        view_id = nodes[0].view_id
        window_id = nodes[0].window_id
        position = {nid: i for i, nid in enumerate(document_order(self.store, view_id))}
        ordered = sorted(selected_ids, key=position.__getitem__)
        selected = set(ordered)

        slot_id = ordered[-1]
        for ancestor_id in self.store.ancestors(slot_id):
            if ancestor_id in selected:
                slot_id = ancestor_id
        slot_node = self.store.require_node(slot_id)
        slot_index = self.store.index_in_parent(slot_id)

        titles = [self.store.require_node(nid).title for nid in ordered]
        group_name = name or default_group_name(titles, self.config.groups.default_name)
        group_color = color or self.config.groups.default_color

        tab_id = self.host.create_group_tab(window_id, None)
        if self.store.get_node_by_tab_id(tab_id) is not None:
            raise DuplicateBackingTab(f"Host returned tab {tab_id}, which is already in use")
        group = Node(
            id=new_node_id(),
            backing_tab_id=tab_id,
            view_id=view_id,
            window_id=window_id,
            parent_id=slot_node.parent_id,
            is_expanded=True,
            group_info=GroupInfo(name=group_name, color=group_color),
        )
        group = self.store.upsert_node(group, slot_index)
        self.expect_synthesized(tab_id)

        for nid in ordered:
            member = self.store.require_node(nid)
            self.store.upsert_node(replace(member, parent_id=group.id), len(group.children))
        logger.info("Created group %s '%s' with %d nodes", group.id, group_name, len(ordered))
        return self.store.require_node(group.id)

    def _require_group(self, group_node_id: str) -> Node:
        group = self.store.require_node(group_node_id)
        if group.group_info is None:
            raise NotAGroup(f"Node {group_node_id} is not a group")
        return group

    def add_to_group(self, node_id: str, group_node_id: str) -> Node:
        """Reparent node_id as the last child of an existing group."""
        group = self._require_group(group_node_id)
        node = self.store.require_node(node_id)
        index = len(group.children)
        if node.parent_id == group.id:
            index -= 1
        return self.reparent(node_id, group.id, index)

    def dissolve_group(self, group_node_id: str) -> int:
        """Promote the group's children into its slot and drop the group node.

        Returns the group's backing tab id so the host page can be closed.
        """
        group = self._require_group(group_node_id)
        self._promote_children(group)
        self.store.remove_node(group.id)
        logger.info("Dissolved group %s", group.id)
        return group.backing_tab_id

    def update_group(
        self,
        group_node_id: str,
        name: str | None = None,
        color: str | None = None,
    ) -> Node:
        group = self._require_group(group_node_id)
        info = GroupInfo(
            name=name if name is not None else group.group_info.name,
            color=color if color is not None else group.group_info.color,
        )
        return self.store.upsert_node(replace(group, group_info=info))

    # ------------------------------------------------------------------
    # Signals that refresh caches and order
    # ------------------------------------------------------------------

    def refresh_tab(self, tab_id: int, title: str | None = None, url: str | None = None) -> Node | None:
        node = self.store.get_node_by_tab_id(tab_id)
        if node is None:
            return None
        self.store.set_tab_info(node.id, title=title, url=url)
        return node

    def record_tab_position(self, window_id: int, tab_id: int, index: int | None) -> None:
        """Track the host's flat tab order for a window."""
        self.forget_tab_position(tab_id)
        order = self.store.ensure_window(window_id).tab_order
        if index is None or index >= len(order):
            order.append(tab_id)
        else:
            order.insert(max(index, 0), tab_id)

    def forget_tab_position(self, tab_id: int) -> None:
        for window in self.store.state.windows.values():
            if tab_id in window.tab_order:
                window.tab_order.remove(tab_id)

    def sync_order(self, tab_id: int) -> None:
        """Re-sort the moved tab's siblings to match the host tab order.

        Siblings the host order does not know keep their positions.
        """
        node = self.store.get_node_by_tab_id(tab_id)
        if node is None:
            return
        window = self.store.get_window(node.window_id)
        if window is None:
            return
        host_position = {t: i for i, t in enumerate(window.tab_order)}
        siblings = self.store.sibling_ids(node.id)
        nodes = self.store.state.nodes

        known_slots = [
            i for i, sid in enumerate(siblings)
            if nodes[sid].backing_tab_id in host_position
        ]
        known = sorted(
            (siblings[i] for i in known_slots),
            key=lambda sid: host_position[nodes[sid].backing_tab_id],
        )
        reordered = list(siblings)
        for slot, sid in zip(known_slots, known):
            reordered[slot] = sid
        if reordered != siblings:
            self.store.reorder_children(node.parent_id, reordered, view_id=node.view_id)
