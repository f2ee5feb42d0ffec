"""Snapshot encoding shared by all storage backends."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ..core.tree_store import default_view_id
from ..types import GroupInfo, Node, Snapshot, TabRef, TreeState, View, WindowContext

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


def str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _walk_view(state: TreeState, view: View):
    stack = list(reversed(view.root_nodes))
    while stack:
        node = state.nodes[stack.pop()]
        yield node
        stack.extend(reversed(node.children))


def _node_to_dict(node: Node) -> dict:
    entry = {
        "backing_tab_id": node.backing_tab_id,
        "parent_id": node.parent_id,
        "is_expanded": node.is_expanded,
        "title": node.title,
        "url": node.url,
    }
    if node.group_info is not None:
        entry["group_info"] = {"name": node.group_info.name, "color": node.group_info.color}
    return entry


def state_to_dict(state: TreeState, saved_at: datetime | None = None) -> dict:
    """Encode a TreeState as a flat, JSON-ready snapshot.

    Node tables are written in document order; children lists and the tab
    index are left out because state_from_dict rebuilds them.
    """
    windows = []
    for window in state.windows.values():
        views = []
        for view_id in window.view_ids:
            view = state.views[view_id]
            views.append({
                "id": view.id,
                "name": view.name,
                "color": view.color,
                "nodes": {node.id: _node_to_dict(node) for node in _walk_view(state, view)},
            })
        windows.append({
            "window_id": window.window_id,
            "active_view_id": window.active_view_id,
            "last_active_tab_id": window.last_active_tab_id,
            "tab_order": list(window.tab_order),
            "views": views,
        })
    return {
        "version": SNAPSHOT_VERSION,
        "saved_at": dt_to_str(saved_at or datetime.now(timezone.utc)),
        "windows": windows,
        "unread_tab_ids": sorted(state.unread_tab_ids),
    }


def _node_from_dict(node_id: str, raw: dict, view: View) -> Node:
    group_raw = raw.get("group_info")
    return Node(
        id=node_id,
        backing_tab_id=int(raw["backing_tab_id"]),
        view_id=view.id,
        window_id=view.window_id,
        parent_id=raw.get("parent_id"),
        is_expanded=bool(raw.get("is_expanded", True)),
        group_info=GroupInfo(group_raw.get("name", ""), group_raw.get("color", "")) if group_raw else None,
        title=raw.get("title", ""),
        url=raw.get("url", ""),
    )


def _link_view(state: TreeState, view: View, table: list[Node]) -> None:
    """Rebuild children and root lists from parent ids, in table order."""
    members = {node.id for node in table}
    for node in table:
        if node.parent_id is not None and node.parent_id not in members:
            logger.warning("Node %s has missing parent %s; restoring as root", node.id, node.parent_id)
            node.parent_id = None
        if node.parent_id is None:
            view.root_nodes.append(node.id)
        else:
            state.nodes[node.parent_id].children.append(node.id)

    # Parent chains that loop never reach a root; cut them loose.
    reached: set[str] = set()

    def mark(start: list[str]) -> None:
        stack = list(start)
        while stack:
            current = stack.pop()
            if current in reached:
                continue
            reached.add(current)
            stack.extend(state.nodes[current].children)

    mark(view.root_nodes)
    for node in table:
        if node.id in reached:
            continue
        logger.warning("Node %s is part of a parent cycle; restoring as root", node.id)
        state.nodes[node.parent_id].children.remove(node.id)
        node.parent_id = None
        view.root_nodes.append(node.id)
        mark([node.id])


def state_from_dict(data: dict) -> TreeState:
    """Decode a snapshot produced by state_to_dict."""
    if not isinstance(data, dict) or not isinstance(data.get("windows"), list):
        raise ValueError("Malformed tree snapshot: missing 'windows' list")
    try:
        version = int(data.get("version", SNAPSHOT_VERSION))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Malformed tree snapshot: bad version {data.get('version')!r}") from e
    if version > SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version}")

    state = TreeState()
    for raw_window in data["windows"]:
        window_id = int(raw_window["window_id"])
        window = WindowContext(
            window_id=window_id,
            last_active_tab_id=raw_window.get("last_active_tab_id"),
            tab_order=[int(t) for t in raw_window.get("tab_order", [])],
        )
        state.windows[window_id] = window

        raw_views = raw_window.get("views") or [{"id": default_view_id(window_id), "nodes": {}}]
        for raw_view in raw_views:
            view = View(
                id=raw_view["id"],
                window_id=window_id,
                name=raw_view.get("name", "Default"),
                color=raw_view.get("color", ""),
            )
            state.views[view.id] = view
            window.view_ids.append(view.id)

            table: list[Node] = []
            for node_id, raw_node in (raw_view.get("nodes") or {}).items():
                node = _node_from_dict(node_id, raw_node, view)
                if node.backing_tab_id in state.tab_index:
                    logger.warning(
                        "Tab %s backs more than one node; dropping node %s",
                        node.backing_tab_id, node_id,
                    )
                    continue
                if node_id in state.nodes:
                    logger.warning("Duplicate node id %s; dropping later copy", node_id)
                    continue
                state.nodes[node_id] = node
                state.tab_index[node.backing_tab_id] = TabRef(view.id, node_id)
                table.append(node)
            _link_view(state, view, table)

        active = raw_window.get("active_view_id")
        window.active_view_id = active if active in window.view_ids else window.view_ids[0]

    for tab_id in data.get("unread_tab_ids") or []:
        if int(tab_id) in state.tab_index:
            state.unread_tab_ids.add(int(tab_id))
    return state


def snapshot_to_dict(snapshot: Snapshot) -> dict:
    return {
        "id": snapshot.id,
        "name": snapshot.name,
        "created_at": dt_to_str(snapshot.created_at),
        "is_auto_save": snapshot.is_auto_save,
        "data": snapshot.data,
    }


def snapshot_from_dict(raw: dict) -> Snapshot:
    """Decode a named snapshot. The embedded tree document is checked too."""
    if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
        raise ValueError("Malformed snapshot: missing 'data' document")
    state_from_dict(raw["data"])
    try:
        created_at = str_to_dt(raw["created_at"]) if raw.get("created_at") else datetime.now(timezone.utc)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Malformed snapshot: bad created_at {raw.get('created_at')!r}") from e
    return Snapshot(
        id=str(raw.get("id") or ""),
        name=str(raw.get("name") or "Imported"),
        created_at=created_at,
        is_auto_save=bool(raw.get("is_auto_save", False)),
        data=raw["data"],
    )
