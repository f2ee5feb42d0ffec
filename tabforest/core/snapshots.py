"""Named snapshots of the forest, and the timer that takes them automatically."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable

from ..storage.helpers import snapshot_from_dict, snapshot_to_dict
from ..types import Snapshot
from .store import KeyValueStore

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot-"


def snapshot_from_json(text: str) -> Snapshot:
    """Parse an exported snapshot. Raises ValueError on malformed input."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Snapshot is not valid JSON: {e}") from e
    return snapshot_from_dict(raw)


class SnapshotManager:
    """Stores named snapshots next to the live tree state, one key each."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def create(
        self,
        name: str,
        data: dict,
        is_auto_save: bool = False,
        created_at: datetime | None = None,
    ) -> Snapshot:
        created_at = created_at or datetime.now(timezone.utc)
        snapshot_id = f"{SNAPSHOT_PREFIX}{int(created_at.timestamp() * 1000)}-{uuid.uuid4().hex[:7]}"
        snapshot = Snapshot(
            id=snapshot_id,
            name=name,
            created_at=created_at,
            is_auto_save=is_auto_save,
            data=data,
        )
        self.store.set(snapshot_id, snapshot_to_dict(snapshot))
        logger.info("Created %s snapshot %s '%s'", "auto" if is_auto_save else "named", snapshot_id, name)
        return snapshot

    def get(self, snapshot_id: str) -> Snapshot | None:
        if not snapshot_id.startswith(SNAPSHOT_PREFIX):
            return None
        raw = self.store.get(snapshot_id)
        if raw is None:
            return None
        return snapshot_from_dict(raw)

    def list_snapshots(self) -> list[Snapshot]:
        """All readable snapshots, oldest first. Unreadable ones are skipped."""
        snapshots = []
        for key in self.store.keys():
            if not key.startswith(SNAPSHOT_PREFIX):
                continue
            try:
                snapshot = self.get(key)
            except ValueError as e:
                logger.warning("Skipping unreadable snapshot %s: %s", key, e)
                continue
            if snapshot is not None:
                snapshots.append(snapshot)
        snapshots.sort(key=lambda s: s.created_at)
        return snapshots

    def delete(self, snapshot_id: str) -> bool:
        if not snapshot_id.startswith(SNAPSHOT_PREFIX):
            return False
        return self.store.delete(snapshot_id)

    def export_json(self, snapshot_id: str) -> str:
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            raise KeyError(f"Snapshot not found: {snapshot_id}")
        return json.dumps(snapshot_to_dict(snapshot), indent=2)

    def prune_auto(self, keep: int) -> list[str]:
        """Delete the oldest automatic snapshots beyond ``keep``. Named ones stay."""
        autos = [s for s in self.list_snapshots() if s.is_auto_save]
        doomed = autos[:max(len(autos) - keep, 0)]
        for snapshot in doomed:
            self.store.delete(snapshot.id)
        if doomed:
            logger.debug("Pruned %d automatic snapshots", len(doomed))
        return [s.id for s in doomed]


class AutoSnapshotter:
    """Calls ``take`` every ``interval`` seconds on a daemon timer until stopped."""

    def __init__(self, take: Callable[[], object], interval: float) -> None:
        self.take = take
        self.interval = interval
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._stopped = True
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return not self._stopped

    def start(self) -> None:
        with self._lock:
            self._stopped = False
            self._schedule()

    def _schedule(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self.interval, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._stopped:
                return
        try:
            self.take()
            self.runs += 1
        except Exception as e:
            logger.error("Automatic snapshot failed: %s", e)
            self.failures += 1
        with self._lock:
            if not self._stopped:
                self._schedule()

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
