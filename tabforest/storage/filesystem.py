"""FilesystemStore: one JSON file per key under a root directory."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path

from ..core.store import KeyValueStore

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class FilesystemStore(KeyValueStore):
    """Stores each document as ``<root>/<key>.json``.

    Writes go to a temp file that is then renamed over the target, so a
    reader never sees a half-written snapshot.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> dict | None:
        path = self._path(key)
        if not path.is_file():
            return None
        return json.loads(path.read_text())

    def set(self, key: str, value: dict) -> None:
        path = self._path(key)
        tmp = path.with_suffix(f".json.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(value, indent=2))
        os.replace(tmp, path)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def keys(self) -> list[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))
