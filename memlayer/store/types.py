from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class Memory:
    id: str
    project_id: str
    content: str
    created_at: str
    updated_at: str
    metadata: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult(Memory):
    # cosine similarity, raw bm25 (lower is better) or fused rank score
    score: float | None = None


@dataclass(frozen=True)
class ConflictMemory:
    id: str
    content: str
    similarity: float


@dataclass(frozen=True)
class Added:
    id: str


@dataclass(frozen=True)
class Conflicts:
    proposed: str
    conflicts: list[ConflictMemory] = field(default_factory=list)
