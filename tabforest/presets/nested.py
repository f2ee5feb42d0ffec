"""Nested preset: every new tab nests under the tab you were looking at."""

from __future__ import annotations

from .base import Preset, register_preset

NESTED_TEMPLATE = """\
# tabforest configuration (nested)
version: "0.1"

placement:
  link_opened: child
  manual_opened: child    # anchors on the last active tab of the window
  duplicate_opened: child

detach:
  child_behavior: close_all

storage:
  backend: sqlite
  sqlite_path: .tabforest/store.db

snapshots:
  auto_interval_minutes: 30
  max_auto: 5
"""

nested_preset = register_preset(Preset(
    name="nested",
    description="All new tabs nest under the active tab; closing a parent closes its subtree",
    template=NESTED_TEMPLATE,
))
