"""Default preset: links nest under their opener, new tabs go to the end."""

from __future__ import annotations

from .base import Preset, register_preset

DEFAULT_TEMPLATE = """\
# tabforest configuration
version: "0.1"

# ---------------------------------------------------------------------------
# Placement of newly opened tabs: child | sibling | end
# ---------------------------------------------------------------------------

placement:
  link_opened: child      # tab opened from a link in another tab
  manual_opened: end      # new-tab button, bookmarks, system pages
  duplicate_opened: sibling  # copy made with the duplicate command
  system_url_prefixes:
    - "chrome://"
    - "chrome-extension://"
    - "vivaldi://"
    - "vivaldi-webui://"
    - "edge://"
    - "about:"
    - "devtools://"

# What happens to children when their parent tab closes: promote | close_all
detach:
  child_behavior: promote

groups:
  default_name: Group
  default_color: "#f59e0b"

views:
  default_name: Default
  default_color: "#3b82f6"

persistence:
  debounce_ms: 300

storage:
  backend: filesystem     # filesystem | sqlite | memory
  root: .tabforest/store
  sqlite_path: .tabforest/store.db

reconcile:
  match_by_url: true

# Named snapshots; 0 turns automatic snapshots off
snapshots:
  auto_interval_minutes: 0
  max_auto: 10
"""

default_preset = register_preset(Preset(
    name="default",
    description="Links open as children of their opener; other tabs append as roots",
    template=DEFAULT_TEMPLATE,
))
