from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from .errors import ValidationError

if TYPE_CHECKING:
    from .store.types import SearchResult

DEFAULT_RRF_K = 25.0


def validate_rrf_k(k: float) -> float:
    value = float(k)
    if not math.isfinite(value) or value < 0.0:
        raise ValidationError(f"Invalid RRF k: {k} (must be finite and >= 0)")
    return value


def rrf_fuse(
    ranked_lists: Sequence[Sequence[SearchResult]], k: float = DEFAULT_RRF_K
) -> list[SearchResult]:
    """Reciprocal Rank Fusion.

    Each input list is ordered best first. The item at 1-based rank ``r`` earns
    ``1 / (k + r)`` from that list and scores are summed per memory id. Every id
    seen in any list is returned once, ordered by fused score with ties broken
    by id.
    """

    k = validate_rrf_k(k)
    scores: dict[str, float] = {}
    first_seen: dict[str, SearchResult] = {}
    for ranked in ranked_lists:
        for rank, item in enumerate(ranked, start=1):
            scores[item.id] = scores.get(item.id, 0.0) + 1.0 / (k + rank)
            first_seen.setdefault(item.id, item)
    ordered = sorted(scores.items(), key=lambda pair: (-pair[1], pair[0]))
    return [replace(first_seen[memory_id], score=score) for memory_id, score in ordered]
