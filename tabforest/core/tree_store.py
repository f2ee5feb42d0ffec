"""TreeStore: authoritative in-memory forest with invariant-checked primitives."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace

from ..types import (
    CrossViewReparent,
    CycleDetected,
    DuplicateBackingTab,
    Node,
    NodeNotFound,
    TabRef,
    TreeState,
    View,
    WindowContext,
)

logger = logging.getLogger(__name__)


def default_view_id(window_id: int) -> str:
    return f"w{window_id}-default"


class TreeStore:
    """Owns a TreeState and guards its structural invariants.

    Every primitive validates first and mutates second, so a rejected call
    leaves the state untouched. Node objects handed out by lookups are the
    stored instances; callers change structure through upsert_node with a
    fresh copy (dataclasses.replace) rather than by editing them in place.
    """

    def __init__(
        self,
        state: TreeState | None = None,
        default_view_name: str = "Default",
        default_view_color: str = "",
    ) -> None:
        self.state = state or TreeState()
        self.default_view_name = default_view_name
        self.default_view_color = default_view_color

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self.state.nodes.get(node_id)

    def require_node(self, node_id: str) -> Node:
        node = self.state.nodes.get(node_id)
        if node is None:
            raise NodeNotFound(f"Node not found: {node_id}")
        return node

    def get_node_by_tab_id(self, tab_id: int) -> Node | None:
        ref = self.state.tab_index.get(tab_id)
        if ref is None:
            return None
        return self.state.nodes.get(ref.node_id)

    def get_view(self, view_id: str) -> View | None:
        return self.state.views.get(view_id)

    def require_view(self, view_id: str) -> View:
        view = self.state.views.get(view_id)
        if view is None:
            raise NodeNotFound(f"View not found: {view_id}")
        return view

    def get_window(self, window_id: int) -> WindowContext | None:
        return self.state.windows.get(window_id)

    def active_view_id(self, window_id: int) -> str:
        window = self.ensure_window(window_id)
        if window.active_view_id is None:
            raise NodeNotFound(f"Window {window_id} has no active view")
        return window.active_view_id

    def children_of(self, node_id: str) -> list[str]:
        return list(self.require_node(node_id).children)

    def roots_of(self, view_id: str) -> list[str]:
        return list(self.require_view(view_id).root_nodes)

    def sibling_ids(self, node_id: str) -> list[str]:
        """Ids of the list containing node_id (parent's children or view roots)."""
        return list(self._container(self.require_node(node_id)))

    def index_in_parent(self, node_id: str) -> int:
        node = self.require_node(node_id)
        return self._container(node).index(node_id)

    def ancestors(self, node_id: str) -> list[str]:
        """Ancestor ids from the direct parent up to the root."""
        result: list[str] = []
        node = self.require_node(node_id)
        seen = {node_id}
        while node.parent_id is not None:
            if node.parent_id in seen:
                break
            seen.add(node.parent_id)
            result.append(node.parent_id)
            parent = self.state.nodes.get(node.parent_id)
            if parent is None:
                break
            node = parent
        return result

    def is_descendant(self, node_id: str, ancestor_id: str) -> bool:
        """True if node_id lies strictly below ancestor_id."""
        if node_id not in self.state.nodes:
            return False
        return ancestor_id in self.ancestors(node_id)

    def _container(self, node: Node) -> list[str]:
        if node.parent_id is None:
            return self.state.views[node.view_id].root_nodes
        return self.state.nodes[node.parent_id].children

    def _container_for(self, parent_id: str | None, view_id: str) -> list[str]:
        if parent_id is None:
            return self.state.views[view_id].root_nodes
        return self.state.nodes[parent_id].children

    # ------------------------------------------------------------------
    # Windows and views
    # ------------------------------------------------------------------

    def ensure_window(self, window_id: int) -> WindowContext:
        """Return the window context, creating it with a default view."""
        window = self.state.windows.get(window_id)
        if window is not None:
            return window
        window = WindowContext(window_id=window_id)
        self.state.windows[window_id] = window
        view = View(
            id=default_view_id(window_id),
            window_id=window_id,
            name=self.default_view_name,
            color=self.default_view_color,
        )
        self.state.views[view.id] = view
        window.view_ids.append(view.id)
        window.active_view_id = view.id
        logger.debug("Created window %s with view %s", window_id, view.id)
        return window

    def add_view(
        self,
        window_id: int,
        name: str,
        color: str = "",
        view_id: str | None = None,
    ) -> View:
        window = self.ensure_window(window_id)
        view_id = view_id or f"view-{uuid.uuid4().hex[:8]}"
        if view_id in self.state.views:
            raise ValueError(f"View already exists: {view_id}")
        view = View(id=view_id, window_id=window_id, name=name, color=color)
        self.state.views[view_id] = view
        window.view_ids.append(view_id)
        return view

    def update_view(self, view_id: str, name: str | None = None, color: str | None = None) -> View:
        view = self.require_view(view_id)
        if name is not None:
            view.name = name
        if color is not None:
            view.color = color
        return view

    def remove_view(self, view_id: str) -> list[int]:
        """Delete a view and every node in it. Returns the destroyed backing tab ids."""
        view = self.require_view(view_id)
        window = self.state.windows[view.window_id]
        if len(window.view_ids) <= 1:
            raise ValueError(f"Cannot remove the only view of window {view.window_id}")

        doomed = [n for n in self.state.nodes.values() if n.view_id == view_id]
        tab_ids = [n.backing_tab_id for n in doomed]
        for node in doomed:
            del self.state.nodes[node.id]
            self.state.tab_index.pop(node.backing_tab_id, None)
            self.state.unread_tab_ids.discard(node.backing_tab_id)
        del self.state.views[view_id]
        window.view_ids.remove(view_id)
        if window.active_view_id == view_id:
            window.active_view_id = window.view_ids[0]
        logger.info("Removed view %s (%d nodes)", view_id, len(doomed))
        return tab_ids

    def set_active_view(self, window_id: int, view_id: str) -> None:
        window = self.state.windows.get(window_id)
        if window is None or view_id not in window.view_ids:
            raise NodeNotFound(f"View {view_id} not in window {window_id}")
        window.active_view_id = view_id

    # ------------------------------------------------------------------
    # Node primitives
    # ------------------------------------------------------------------

    def upsert_node(self, node: Node, index: int | None = None) -> Node:
        """Insert a new node or apply a changed copy of an existing one.

        ``index`` positions the node in its (new) parent's child list, or in
        the view roots when parent_id is None; None appends. For a node that
        stays under the same parent, ``index`` counts positions after the
        node has been taken out of the list. The ``children`` field of the
        argument is ignored for existing nodes and must be empty for new ones.
        """
        existing = self.state.nodes.get(node.id)
        self._validate_upsert(node, existing)

        if existing is None:
            stored = replace(node, children=[])
        else:
            group_info = node.group_info or existing.group_info
            stored = replace(node, children=existing.children, group_info=group_info)

        moving = (
            existing is None
            or existing.parent_id != stored.parent_id
            or index is not None
        )
        if existing is not None and moving:
            self._container(existing).remove(existing.id)
        if existing is not None and existing.backing_tab_id != stored.backing_tab_id:
            self.state.tab_index.pop(existing.backing_tab_id, None)

        self.state.nodes[stored.id] = stored
        self.state.tab_index[stored.backing_tab_id] = TabRef(stored.view_id, stored.id)
        if moving:
            container = self._container_for(stored.parent_id, stored.view_id)
            if index is None or index > len(container):
                container.append(stored.id)
            else:
                container.insert(max(index, 0), stored.id)
        return stored

    def _validate_upsert(self, node: Node, existing: Node | None) -> None:
        view = self.state.views.get(node.view_id)
        if view is None:
            raise NodeNotFound(f"View not found: {node.view_id}")
        if view.window_id != node.window_id:
            raise CrossViewReparent(
                f"Node {node.id} window {node.window_id} does not own view {node.view_id}"
            )
        if existing is not None and (
            existing.view_id != node.view_id or existing.window_id != node.window_id
        ):
            raise CrossViewReparent(f"Node {node.id} cannot change view")
        if existing is None and node.children:
            raise ValueError("New nodes must not carry children")
        if existing is not None and existing.group_info is None and node.group_info is not None:
            raise ValueError(f"Node {node.id} is not a group; group_info is set only at creation")

        owner = self.state.tab_index.get(node.backing_tab_id)
        if owner is not None and owner.node_id != node.id:
            raise DuplicateBackingTab(
                f"Tab {node.backing_tab_id} already backs node {owner.node_id}"
            )

        if node.parent_id is not None:
            parent = self.state.nodes.get(node.parent_id)
            if parent is None:
                raise NodeNotFound(f"Parent not found: {node.parent_id}")
            if parent.view_id != node.view_id or parent.window_id != node.window_id:
                raise CrossViewReparent(
                    f"Parent {parent.id} is in view {parent.view_id}, node in {node.view_id}"
                )
            if node.parent_id == node.id or (
                existing is not None and self.is_descendant(node.parent_id, node.id)
            ):
                raise CycleDetected(f"Cannot place {node.id} under {node.parent_id}")

    def remove_node(self, node_id: str) -> Node:
        """Remove a childless node. Children must be moved away first."""
        node = self.require_node(node_id)
        if node.children:
            raise ValueError(f"Node {node_id} still has {len(node.children)} children")
        self._container(node).remove(node_id)
        del self.state.nodes[node_id]
        ref = self.state.tab_index.get(node.backing_tab_id)
        if ref is not None and ref.node_id == node_id:
            del self.state.tab_index[node.backing_tab_id]
            self.state.unread_tab_ids.discard(node.backing_tab_id)
        return node

    def reorder_children(
        self,
        parent_id: str | None,
        ordered_child_ids: list[str],
        view_id: str | None = None,
    ) -> None:
        """Replace a child list (or a view's roots) with a permutation of itself."""
        if parent_id is None:
            if view_id is None:
                raise ValueError("view_id is required to reorder root nodes")
            container = self.require_view(view_id).root_nodes
        else:
            container = self.require_node(parent_id).children
        if len(ordered_child_ids) != len(container) or set(ordered_child_ids) != set(container):
            raise ValueError("ordered_child_ids must be a permutation of the current children")
        container[:] = ordered_child_ids

    def set_expanded(self, node_id: str, expanded: bool) -> None:
        self.require_node(node_id).is_expanded = expanded

    def set_tab_info(self, node_id: str, title: str | None = None, url: str | None = None) -> None:
        node = self.require_node(node_id)
        if title is not None:
            node.title = title
        if url is not None:
            node.url = url

    def replace_backing_tab(self, node_id: str, new_tab_id: int) -> Node:
        """Rebind a node to a different host tab (e.g. after a host restart)."""
        node = self.require_node(node_id)
        if node.backing_tab_id == new_tab_id:
            return node
        old_tab_id = node.backing_tab_id
        rebound = self.upsert_node(replace(node, backing_tab_id=new_tab_id))
        if old_tab_id in self.state.unread_tab_ids:
            self.state.unread_tab_ids.discard(old_tab_id)
            self.state.unread_tab_ids.add(new_tab_id)
        return rebound

    # ------------------------------------------------------------------
    # Unread tabs
    # ------------------------------------------------------------------

    def mark_unread(self, tab_id: int) -> None:
        if tab_id not in self.state.tab_index:
            raise NodeNotFound(f"No node for tab {tab_id}")
        self.state.unread_tab_ids.add(tab_id)

    def mark_read(self, tab_id: int) -> bool:
        """Clear the unread flag. Returns True if the tab was unread."""
        if tab_id not in self.state.unread_tab_ids:
            return False
        self.state.unread_tab_ids.discard(tab_id)
        return True

    def is_unread(self, tab_id: int) -> bool:
        return tab_id in self.state.unread_tab_ids

    def unread_count(self, view_id: str | None = None) -> int:
        if view_id is None:
            return len(self.state.unread_tab_ids)
        refs = (self.state.tab_index.get(tab_id) for tab_id in self.state.unread_tab_ids)
        return sum(1 for ref in refs if ref is not None and ref.view_id == view_id)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def check_invariants(self) -> list[str]:
        """Return a list of violated invariants (empty = consistent)."""
        errors: list[str] = []
        state = self.state
        placed: dict[str, str] = {}

        for view_id, view in state.views.items():
            window = state.windows.get(view.window_id)
            if window is None or view_id not in window.view_ids:
                errors.append(f"view {view_id} not registered in window {view.window_id}")
            for root_id in view.root_nodes:
                root = state.nodes.get(root_id)
                if root is None:
                    errors.append(f"view {view_id} lists missing root {root_id}")
                    continue
                if root.parent_id is not None:
                    errors.append(f"root {root_id} has parent {root.parent_id}")
                if root.view_id != view_id:
                    errors.append(f"root {root_id} belongs to view {root.view_id}, listed in {view_id}")
                if root_id in placed:
                    errors.append(f"node {root_id} listed twice")
                placed[root_id] = view_id

        for node in state.nodes.values():
            for child_id in node.children:
                child = state.nodes.get(child_id)
                if child is None:
                    errors.append(f"node {node.id} lists missing child {child_id}")
                    continue
                if child.parent_id != node.id:
                    errors.append(f"child {child_id} of {node.id} points at parent {child.parent_id}")
                if child.view_id != node.view_id or child.window_id != node.window_id:
                    errors.append(f"child {child_id} view differs from parent {node.id}")
                if child_id in placed:
                    errors.append(f"node {child_id} listed twice")
                placed[child_id] = node.id

        for node in state.nodes.values():
            if node.id not in placed:
                errors.append(f"node {node.id} is not reachable from its parent or view")
            if node.view_id not in state.views:
                errors.append(f"node {node.id} references missing view {node.view_id}")
            seen = {node.id}
            cursor = node
            while cursor.parent_id is not None:
                if cursor.parent_id in seen:
                    errors.append(f"cycle through node {node.id}")
                    break
                seen.add(cursor.parent_id)
                parent = state.nodes.get(cursor.parent_id)
                if parent is None:
                    errors.append(f"node {cursor.id} references missing parent {cursor.parent_id}")
                    break
                cursor = parent

        tabs: dict[int, str] = {}
        for node in state.nodes.values():
            if node.backing_tab_id in tabs:
                errors.append(
                    f"tab {node.backing_tab_id} backs {tabs[node.backing_tab_id]} and {node.id}"
                )
            tabs[node.backing_tab_id] = node.id
            ref = state.tab_index.get(node.backing_tab_id)
            if ref != TabRef(node.view_id, node.id):
                errors.append(f"tab index out of date for node {node.id}")
        for tab_id, ref in state.tab_index.items():
            if ref.node_id not in state.nodes:
                errors.append(f"tab index entry {tab_id} points at missing node {ref.node_id}")
        for tab_id in sorted(state.unread_tab_ids):
            if tab_id not in state.tab_index:
                errors.append(f"unread tab {tab_id} has no node")

        return errors
