"""All dataclasses, Protocols, events, and exceptions for tabforest."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol, Union, runtime_checkable


def new_node_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TreeError(Exception):
    """Base class for rejected structural operations."""


class CycleDetected(TreeError):
    """Reparent target is the node itself or one of its descendants."""


class CrossViewReparent(TreeError):
    """Operation would link nodes living in different views or windows."""


class DuplicateBackingTab(TreeError):
    """A backing tab id is already owned by another node."""


class NotAGroup(TreeError):
    """Target node has no group_info."""


class NodeNotFound(TreeError):
    """Referenced node, tab, view or window does not exist."""


# ---------------------------------------------------------------------------
# Forest model
# ---------------------------------------------------------------------------

@dataclass
class GroupInfo:
    name: str
    color: str = ""


@dataclass
class Node:
    """A forest element backed by exactly one real host tab."""
    id: str
    backing_tab_id: int
    view_id: str
    window_id: int
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    is_expanded: bool = True
    group_info: GroupInfo | None = None
    title: str = ""
    url: str = ""

    @property
    def is_group(self) -> bool:
        return self.group_info is not None


@dataclass
class View:
    """A named, independently ordered forest within a window."""
    id: str
    window_id: int
    name: str = "Default"
    color: str = ""
    root_nodes: list[str] = field(default_factory=list)


@dataclass
class WindowContext:
    window_id: int
    view_ids: list[str] = field(default_factory=list)
    active_view_id: str | None = None
    last_active_tab_id: int | None = None
    tab_order: list[int] = field(default_factory=list)  # host tab ids in host index order


@dataclass(frozen=True)
class TabRef:
    view_id: str
    node_id: str


@dataclass
class TreeState:
    """Aggregate root: windows, views, nodes, and the tab index."""
    windows: dict[int, WindowContext] = field(default_factory=dict)
    views: dict[str, View] = field(default_factory=dict)
    nodes: dict[str, Node] = field(default_factory=dict)
    tab_index: dict[int, TabRef] = field(default_factory=dict)
    unread_tab_ids: set[int] = field(default_factory=set)  # opened in the background, not yet activated


@dataclass(frozen=True)
class FlatEntry:
    """One row of a view projection."""
    node_id: str
    depth: int
    visible: bool


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

class PlacementPolicy(str, Enum):
    CHILD = "child"
    SIBLING = "sibling"
    END = "end"


class ChildTabBehavior(str, Enum):
    PROMOTE = "promote"
    CLOSE_ALL = "close_all"


@dataclass
class PlacementContext:
    """Everything decide_placement needs; built by the mutation engine."""
    is_system_url: bool
    root_count: int
    link_opened_policy: PlacementPolicy = PlacementPolicy.CHILD
    manual_opened_policy: PlacementPolicy = PlacementPolicy.END
    opener: Node | None = None
    opener_index: int = 0  # opener's position among its siblings
    link_initiated: bool = False
    fallback_anchor: Node | None = None  # last active tab, for manual placement
    fallback_index: int = 0
    duplicate_of: Node | None = None  # source node when the tab is a requested duplicate
    duplicate_index: int = 0
    duplicate_policy: PlacementPolicy | None = None  # set only for detected duplicates


@dataclass(frozen=True)
class Placement:
    parent_id: str | None
    index: int
    policy: PlacementPolicy


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TabCreated:
    tab_id: int
    window_id: int
    url: str = ""
    opener_tab_id: int | None = None
    user_initiated: bool = False
    index: int | None = None
    title: str = ""
    active: bool = True


@dataclass(frozen=True)
class TabRemoved:
    tab_id: int


@dataclass(frozen=True)
class TabUpdated:
    tab_id: int
    title: str | None = None
    url: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class TabMoved:
    tab_id: int
    new_index: int
    window_id: int | None = None


@dataclass(frozen=True)
class TabActivated:
    tab_id: int
    window_id: int | None = None


TabEvent = Union[TabCreated, TabRemoved, TabUpdated, TabMoved, TabActivated]


@dataclass(frozen=True)
class OpenTab:
    """A tab as enumerated from the host at startup."""
    tab_id: int
    window_id: int
    url: str = ""
    title: str = ""
    opener_tab_id: int | None = None


@dataclass
class Snapshot:
    """A named copy of the whole forest, kept apart from the live state."""
    id: str
    name: str
    created_at: datetime
    is_auto_save: bool = False
    data: dict = field(default_factory=dict)  # state_to_dict() document


# ---------------------------------------------------------------------------
# Host collaborator
# ---------------------------------------------------------------------------

@runtime_checkable
class HostTabs(Protocol):
    """Operations the engine asks of the host tab strip."""

    def create_group_tab(self, window_id: int, index: int | None = None) -> int:
        """Open the synthetic page backing a group node. Returns its tab id."""
        ...

    def close_tabs(self, tab_ids: list[int]) -> None:
        ...

    def move_tab(self, tab_id: int, index: int) -> None:
        """Move a tab in the host strip; -1 means the end."""
        ...

    def duplicate_tab(self, tab_id: int) -> None:
        """Ask the host to duplicate a tab; its TabCreated arrives later."""
        ...

    def create_window(self) -> int:
        ...

    def create_tab(self, window_id: int, url: str) -> int:
        """Open a tab in a window. Returns its tab id."""
        ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_SYSTEM_URL_PREFIXES = [
    "chrome://",
    "chrome-extension://",
    "vivaldi://",
    "vivaldi-webui://",
    "edge://",
    "about:",
    "devtools://",
]


@dataclass
class PlacementConfig:
    link_opened: PlacementPolicy = PlacementPolicy.CHILD
    manual_opened: PlacementPolicy = PlacementPolicy.END
    duplicate_opened: PlacementPolicy = PlacementPolicy.SIBLING
    system_url_prefixes: list[str] = field(
        default_factory=lambda: list(DEFAULT_SYSTEM_URL_PREFIXES)
    )


@dataclass
class DetachConfig:
    child_behavior: ChildTabBehavior = ChildTabBehavior.PROMOTE


@dataclass
class GroupConfig:
    default_name: str = "Group"
    default_color: str = "#f59e0b"


@dataclass
class ViewConfig:
    default_name: str = "Default"
    default_color: str = "#3b82f6"


@dataclass
class PersistenceConfig:
    debounce_ms: int = 300


@dataclass
class StorageConfig:
    backend: str = "filesystem"  # "filesystem", "sqlite", or "memory"
    root: str = ".tabforest/store"
    sqlite_path: str = ".tabforest/store.db"


@dataclass
class ReconcileConfig:
    match_by_url: bool = True


@dataclass
class SnapshotConfig:
    auto_interval_minutes: int = 0  # 0 disables automatic snapshots
    max_auto: int = 10  # oldest automatic snapshots beyond this are deleted


@dataclass
class TabForestConfig:
    version: str = "0.1"
    placement: PlacementConfig = field(default_factory=PlacementConfig)
    detach: DetachConfig = field(default_factory=DetachConfig)
    groups: GroupConfig = field(default_factory=GroupConfig)
    views: ViewConfig = field(default_factory=ViewConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    snapshots: SnapshotConfig = field(default_factory=SnapshotConfig)
