"""Placement policy: decide where a newly observed tab goes in the forest."""

from __future__ import annotations

from ..types import Node, Placement, PlacementContext, PlacementPolicy


def is_system_url(url: str, prefixes: list[str]) -> bool:
    """True for host-internal pages (settings, extension pages, new-tab pages)."""
    if not url:
        return False
    lowered = url.lower()
    return any(lowered.startswith(p.lower()) for p in prefixes)


def decide_placement(context: PlacementContext) -> Placement:
    """Return the parent and index for a new node.

    Link-initiated tabs with a live opener follow ``link_opened_policy``;
    everything else, including system URLs that carry an opener, follows
    ``manual_opened_policy``. Manual child/sibling placement anchors on the
    last active tab when there is no opener, and falls back to ``end`` when
    there is no anchor at all. A requested duplicate follows
    ``duplicate_policy`` anchored on its source tab, ahead of both.
    """
    if context.duplicate_policy is not None:
        return _place(
            context.duplicate_policy, context.duplicate_of, context.duplicate_index, context.root_count,
        )

    use_link_policy = (
        not context.is_system_url
        and context.link_initiated
        and context.opener is not None
    )
    if use_link_policy:
        policy = context.link_opened_policy
        anchor = context.opener
        anchor_index = context.opener_index
    else:
        policy = context.manual_opened_policy
        if context.opener is not None and not context.is_system_url:
            anchor, anchor_index = context.opener, context.opener_index
        else:
            anchor, anchor_index = context.fallback_anchor, context.fallback_index
    return _place(policy, anchor, anchor_index, context.root_count)


def _place(policy: PlacementPolicy, anchor: Node | None, anchor_index: int, root_count: int) -> Placement:
    if policy is PlacementPolicy.END or anchor is None:
        return Placement(parent_id=None, index=root_count, policy=PlacementPolicy.END)

    if policy is PlacementPolicy.CHILD:
        return Placement(parent_id=anchor.id, index=len(anchor.children), policy=policy)

    # sibling: directly after the anchor, under the anchor's own parent
    return Placement(parent_id=anchor.parent_id, index=anchor_index + 1, policy=policy)
