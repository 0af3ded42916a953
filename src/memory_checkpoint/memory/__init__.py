"""Live memory stores and snapshot capture."""

from .base import BaseMemoryStore
from .file_store import FileMemoryStore, AGENT_MEMORY_FILE
from .snapshot import SnapshotCapture

__all__ = [
    "BaseMemoryStore",
    "FileMemoryStore",
    "AGENT_MEMORY_FILE",
    "SnapshotCapture",
]
