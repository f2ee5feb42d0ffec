"""KeyValueStore abstract base class: durable storage for tree snapshots."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Pluggable storage backend holding JSON-compatible documents by key."""

    @abstractmethod
    def get(self, key: str) -> dict | None:
        """Return the document stored under key. None if not found."""

    @abstractmethod
    def set(self, key: str, value: dict) -> None:
        """Store a document. Overwrites (last write wins)."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a document. Returns True if it existed."""

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys, sorted."""

    def close(self) -> None:
        """Release backend resources."""
