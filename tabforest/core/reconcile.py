"""Startup reconciliation: turn a snapshot/host diff into ordinary events."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..types import OpenTab, TabCreated, TabEvent, TabRemoved
from .projection import document_order
from .tree_store import TreeStore


@dataclass
class ReconcilePlan:
    rebinds: list[tuple[str, int]] = field(default_factory=list)  # (node_id, new tab id)
    events: list[TabEvent] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return sum(1 for e in self.events if isinstance(e, TabRemoved))

    @property
    def created(self) -> int:
        return sum(1 for e in self.events if isinstance(e, TabCreated))


def plan_reconciliation(
    store: TreeStore,
    open_tabs: list[OpenTab],
    match_by_url: bool = True,
) -> ReconcilePlan:
    """Compare the restored forest with the tabs the host reports as open.

    Nodes whose backing tab is gone become TabRemoved events and unknown
    open tabs become TabCreated events, openers first. With match_by_url, a
    gone node is first rebound to an unknown tab with the same URL in the
    same window, which keeps structure across host restarts that renumber
    tab ids.
    """
    plan = ReconcilePlan()
    state = store.state
    open_ids = {t.tab_id for t in open_tabs}

    stale: list[str] = []
    for view_id in state.views:
        for node_id in document_order(store, view_id):
            if state.nodes[node_id].backing_tab_id not in open_ids:
                stale.append(node_id)
    unknown = [t for t in open_tabs if t.tab_id not in state.tab_index]

    if match_by_url:
        unmatched: list[OpenTab] = []
        for tab in unknown:
            match = None
            if tab.url:
                for node_id in stale:
                    node = state.nodes[node_id]
                    if node.url == tab.url and node.window_id == tab.window_id:
                        match = node_id
                        break
            if match is None:
                unmatched.append(tab)
            else:
                stale.remove(match)
                plan.rebinds.append((match, tab.tab_id))
        unknown = unmatched

    for node_id in stale:
        plan.events.append(TabRemoved(tab_id=state.nodes[node_id].backing_tab_id))

    by_id = {t.tab_id: t for t in unknown}
    emitted: set[int] = set()

    def emit(tab: OpenTab) -> None:
        if tab.tab_id in emitted:
            return
        emitted.add(tab.tab_id)
        opener = by_id.get(tab.opener_tab_id) if tab.opener_tab_id is not None else None
        if opener is not None:
            emit(opener)
        plan.events.append(TabCreated(
            tab_id=tab.tab_id,
            window_id=tab.window_id,
            url=tab.url,
            opener_tab_id=tab.opener_tab_id,
            user_initiated=tab.opener_tab_id is None,
            title=tab.title,
        ))

    for tab in unknown:
        emit(tab)
    return plan
