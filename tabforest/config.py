"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import (
    DEFAULT_SYSTEM_URL_PREFIXES,
    ChildTabBehavior,
    DetachConfig,
    GroupConfig,
    PersistenceConfig,
    PlacementConfig,
    PlacementPolicy,
    ReconcileConfig,
    SnapshotConfig,
    StorageConfig,
    TabForestConfig,
    ViewConfig,
)

CONFIG_FILENAMES = [
    "tabforest.yaml",
    "tabforest.yml",
    "tabforest.json",
]

STORAGE_BACKENDS = ("filesystem", "sqlite", "memory")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _parse_policy(value: Any, default: PlacementPolicy) -> PlacementPolicy | str:
    """Map a raw policy string onto PlacementPolicy.

    Unknown values are kept as raw strings so validate_config can report them.
    """
    if value is None:
        return default
    try:
        return PlacementPolicy(str(value).lower())
    except ValueError:
        return str(value)


def _build_config(raw: dict[str, Any]) -> TabForestConfig:
    """Build a TabForestConfig from a raw dict."""
    # Placement
    placement_raw = raw.get("placement", {}) or {}
    placement = PlacementConfig(
        link_opened=_parse_policy(placement_raw.get("link_opened"), PlacementPolicy.CHILD),
        manual_opened=_parse_policy(placement_raw.get("manual_opened"), PlacementPolicy.END),
        duplicate_opened=_parse_policy(placement_raw.get("duplicate_opened"), PlacementPolicy.SIBLING),
        system_url_prefixes=list(
            placement_raw.get("system_url_prefixes", DEFAULT_SYSTEM_URL_PREFIXES)
        ),
    )

    # Detach
    detach_raw = raw.get("detach", {}) or {}
    behavior = detach_raw.get("child_behavior", ChildTabBehavior.PROMOTE.value)
    try:
        child_behavior: ChildTabBehavior | str = ChildTabBehavior(behavior)
    except ValueError:
        child_behavior = behavior
    detach = DetachConfig(child_behavior=child_behavior)

    # Groups & views
    groups_raw = raw.get("groups", {}) or {}
    groups = GroupConfig(
        default_name=groups_raw.get("default_name", "Group"),
        default_color=groups_raw.get("default_color", "#f59e0b"),
    )
    views_raw = raw.get("views", {}) or {}
    views = ViewConfig(
        default_name=views_raw.get("default_name", "Default"),
        default_color=views_raw.get("default_color", "#3b82f6"),
    )

    # Persistence
    persistence_raw = raw.get("persistence", {}) or {}
    persistence = PersistenceConfig(
        debounce_ms=persistence_raw.get("debounce_ms", 300),
    )

    # Storage
    storage_raw = raw.get("storage", {}) or {}
    storage_root = raw.get("storage_root", ".tabforest")
    storage = StorageConfig(
        backend=storage_raw.get("backend", "filesystem"),
        root=storage_raw.get("root", storage_root + "/store"),
        sqlite_path=storage_raw.get("sqlite_path", storage_root + "/store.db"),
    )

    reconcile_raw = raw.get("reconcile", {}) or {}
    reconcile = ReconcileConfig(
        match_by_url=reconcile_raw.get("match_by_url", True),
    )

    snapshots_raw = raw.get("snapshots", {}) or {}
    snapshots = SnapshotConfig(
        auto_interval_minutes=snapshots_raw.get("auto_interval_minutes", 0),
        max_auto=snapshots_raw.get("max_auto", 10),
    )

    return TabForestConfig(
        version=str(raw.get("version", "0.1")),
        placement=placement,
        detach=detach,
        groups=groups,
        views=views,
        persistence=persistence,
        storage=storage,
        reconcile=reconcile,
        snapshots=snapshots,
    )


def validate_config(config: TabForestConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    valid_policies = ", ".join(p.value for p in PlacementPolicy)
    if not isinstance(config.placement.link_opened, PlacementPolicy):
        errors.append(
            f"placement.link_opened '{config.placement.link_opened}' "
            f"must be one of: {valid_policies}"
        )
    if not isinstance(config.placement.manual_opened, PlacementPolicy):
        errors.append(
            f"placement.manual_opened '{config.placement.manual_opened}' "
            f"must be one of: {valid_policies}"
        )
    if not isinstance(config.placement.duplicate_opened, PlacementPolicy):
        errors.append(
            f"placement.duplicate_opened '{config.placement.duplicate_opened}' "
            f"must be one of: {valid_policies}"
        )
    if not all(isinstance(p, str) and p for p in config.placement.system_url_prefixes):
        errors.append("placement.system_url_prefixes must be non-empty strings")

    if not isinstance(config.detach.child_behavior, ChildTabBehavior):
        errors.append(
            f"detach.child_behavior '{config.detach.child_behavior}' "
            f"must be 'promote' or 'close_all'"
        )

    if not config.groups.default_name:
        errors.append("groups.default_name must not be empty")

    if not isinstance(config.persistence.debounce_ms, int) or config.persistence.debounce_ms < 0:
        errors.append("persistence.debounce_ms must be an integer >= 0")

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(
            f"storage.backend '{config.storage.backend}' "
            f"must be one of: {', '.join(STORAGE_BACKENDS)}"
        )

    interval = config.snapshots.auto_interval_minutes
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 0:
        errors.append("snapshots.auto_interval_minutes must be a number >= 0")
    if not isinstance(config.snapshots.max_auto, int) or config.snapshots.max_auto < 0:
        errors.append("snapshots.max_auto must be an integer >= 0")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> TabForestConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
