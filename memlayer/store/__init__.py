from __future__ import annotations

from ._store import MemoryStore
from .types import Added, ConflictMemory, Conflicts, Memory, SearchResult

__all__ = [
    "Added",
    "ConflictMemory",
    "Conflicts",
    "Memory",
    "MemoryStore",
    "SearchResult",
]
