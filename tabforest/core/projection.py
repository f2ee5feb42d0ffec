"""Read-only, depth-annotated traversals of a view's forest."""

from __future__ import annotations

from typing import Iterator

from ..types import FlatEntry
from .tree_store import TreeStore


def iter_flat(store: TreeStore, view_id: str) -> Iterator[FlatEntry]:
    """Depth-first pre-order walk from the view's roots.

    ``visible`` is true when every ancestor is expanded; it is computed while
    walking, so the walk can be restarted at any time from current state.
    """
    view = store.require_view(view_id)
    nodes = store.state.nodes
    # (node_id, depth, visible) with the last root on top
    stack = [(node_id, 0, True) for node_id in reversed(view.root_nodes)]
    while stack:
        node_id, depth, visible = stack.pop()
        node = nodes[node_id]
        yield FlatEntry(node_id=node_id, depth=depth, visible=visible)
        child_visible = visible and node.is_expanded
        for child_id in reversed(node.children):
            stack.append((child_id, depth + 1, child_visible))


def flatten(store: TreeStore, view_id: str) -> list[FlatEntry]:
    return list(iter_flat(store, view_id))


def visible_entries(store: TreeStore, view_id: str) -> list[FlatEntry]:
    return [e for e in iter_flat(store, view_id) if e.visible]


def document_order(store: TreeStore, view_id: str) -> list[str]:
    """Node ids in on-screen (pre-order) order, collapsed or not."""
    return [e.node_id for e in iter_flat(store, view_id)]


def is_visible(store: TreeStore, node_id: str) -> bool:
    nodes = store.state.nodes
    for ancestor_id in store.ancestors(node_id):
        if not nodes[ancestor_id].is_expanded:
            return False
    return True


def depth_of(store: TreeStore, node_id: str) -> int:
    return len(store.ancestors(node_id))


def subtree(store: TreeStore, node_id: str) -> list[str]:
    """node_id followed by all its descendants in pre-order."""
    nodes = store.state.nodes
    store.require_node(node_id)
    result: list[str] = []
    stack = [node_id]
    while stack:
        current = stack.pop()
        result.append(current)
        stack.extend(reversed(nodes[current].children))
    return result


def subtree_size(store: TreeStore, node_id: str) -> int:
    return len(subtree(store, node_id))


def render_tree(store: TreeStore, view_id: str, show_hidden: bool = False) -> str:
    """Indented text rendering, one line per node."""
    lines: list[str] = []
    nodes = store.state.nodes
    for entry in iter_flat(store, view_id):
        if not entry.visible and not show_hidden:
            continue
        node = nodes[entry.node_id]
        if node.children:
            marker = "-" if node.is_expanded else "+"
        else:
            marker = " "
        label = node.title or node.url or f"tab {node.backing_tab_id}"
        if node.group_info is not None:
            label = f"[{node.group_info.name}]"
        suffix = "" if entry.visible else " (hidden)"
        if store.is_unread(node.backing_tab_id):
            suffix += " (unread)"
        lines.append(f"{'  ' * entry.depth}{marker} {label}  #{node.backing_tab_id}{suffix}")
    return "\n".join(lines)
