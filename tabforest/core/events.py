"""Parse and encode inbound tab events (JSON form, one object per line)."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from ..types import TabActivated, TabCreated, TabEvent, TabMoved, TabRemoved, TabUpdated

EVENT_TYPES: dict[str, type] = {
    "created": TabCreated,
    "removed": TabRemoved,
    "updated": TabUpdated,
    "moved": TabMoved,
    "activated": TabActivated,
}
_TYPE_NAMES = {cls: name for name, cls in EVENT_TYPES.items()}

_CAMEL_KEYS = {
    "tabId": "tab_id",
    "windowId": "window_id",
    "openerTabId": "opener_tab_id",
    "userInitiated": "user_initiated",
    "newIndex": "new_index",
}


def event_from_dict(data: dict[str, Any]) -> TabEvent:
    """Build a TabEvent from ``{"type": "created", "tab_id": 1, ...}``.

    camelCase keys are accepted; unknown keys are ignored.
    """
    kind = str(data.get("type", "")).lower()
    if kind.startswith("tab"):
        kind = kind[3:]
    cls = EVENT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown event type: {data.get('type')!r}")

    fields = {_CAMEL_KEYS.get(k, k): v for k, v in data.items() if k != "type"}
    allowed = cls.__dataclass_fields__
    kwargs = {k: v for k, v in fields.items() if k in allowed}
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ValueError(f"Invalid {kind} event: {e}") from e


def event_to_dict(event: TabEvent) -> dict[str, Any]:
    data = {"type": _TYPE_NAMES[type(event)]}
    data.update({k: v for k, v in asdict(event).items() if v is not None})
    return data
