"""tabforest: keeps a host's flat tab list mirrored as a persistent, nested forest."""

from .config import load_config
from .engine import TabTreeEngine
from .types import (
    FlatEntry,
    GroupInfo,
    Node,
    OpenTab,
    TabActivated,
    TabCreated,
    TabForestConfig,
    TabMoved,
    TabRemoved,
    TabUpdated,
    TreeError,
)

__version__ = "0.1.0"

__all__ = [
    "TabTreeEngine",
    "load_config",
    "FlatEntry",
    "GroupInfo",
    "Node",
    "OpenTab",
    "TabActivated",
    "TabCreated",
    "TabForestConfig",
    "TabMoved",
    "TabRemoved",
    "TabUpdated",
    "TreeError",
]
