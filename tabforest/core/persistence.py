"""Persistence adapter: snapshot save/load and the debounced background saver."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from ..storage.helpers import state_from_dict, state_to_dict, str_to_dt
from ..types import TreeState
from .store import KeyValueStore

logger = logging.getLogger(__name__)

STATE_KEY = "tree_state"


class TreePersistence:
    """Reads and writes the whole forest as one snapshot document."""

    def __init__(self, store: KeyValueStore, key: str = STATE_KEY) -> None:
        self.store = store
        self.key = key

    def save(self, state: TreeState) -> None:
        self.save_snapshot(state_to_dict(state))

    def save_snapshot(self, snapshot: dict) -> None:
        self.store.set(self.key, snapshot)

    def load(self) -> TreeState | None:
        """Return the last saved state, or None if nothing was saved yet."""
        data = self.store.get(self.key)
        if data is None:
            return None
        return state_from_dict(data)

    def last_saved_at(self) -> datetime | None:
        data = self.store.get(self.key)
        if not data or not data.get("saved_at"):
            return None
        return str_to_dt(data["saved_at"])

    def clear(self) -> bool:
        return self.store.delete(self.key)


class DebouncedSaver:
    """Collapses bursts of save requests into one write after a quiet period.

    ``capture`` produces the snapshot to write and is called on the timer
    thread when the timer fires (the engine routes it through its writer
    queue). Each request bumps a generation; a write whose generation has
    been overtaken by a newer request is dropped rather than queued.
    """

    def __init__(
        self,
        persistence: TreePersistence,
        capture: Callable[[], dict],
        delay: float = 0.3,
    ) -> None:
        self.persistence = persistence
        self.capture = capture
        self.delay = delay
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._written_generation = 0
        self.saves = 0
        self.failures = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._generation > self._written_generation

    def schedule(self) -> None:
        """Request a save; restarts the quiet-period timer."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire, args=(generation,))
            self._timer.daemon = True
            self._timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return  # superseded while waiting
        self._write(generation)

    def _write(self, generation: int) -> bool:
        try:
            snapshot = self.capture()
        except Exception as e:
            logger.error("Failed to capture tree snapshot: %s", e)
            self.failures += 1
            return False
        with self._write_lock:
            with self._lock:
                if generation != self._generation:
                    return False  # a newer request will write a fresher snapshot
            try:
                self.persistence.save_snapshot(snapshot)
            except Exception as e:
                # In-memory tree stays authoritative; the next save retries.
                logger.error("Failed to save tree state: %s", e)
                self.failures += 1
                return False
            with self._lock:
                self._written_generation = max(self._written_generation, generation)
            self.saves += 1
            return True

    def flush(self) -> bool:
        """Cancel the timer and write the current state synchronously.

        Returns True when nothing was pending or the write succeeded.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._generation == self._written_generation:
                return True
            generation = self._generation
        return self._write(generation)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
