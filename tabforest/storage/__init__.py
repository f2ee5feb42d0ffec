from .filesystem import FilesystemStore
from .memory import MemoryStore
from .sqlite import SQLiteStore

__all__ = ["FilesystemStore", "MemoryStore", "SQLiteStore"]
