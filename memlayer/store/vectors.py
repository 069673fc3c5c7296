from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence

from ..errors import CodecError, StorageError
from ..limits import MAX_SEARCH_LIMIT, validate_limit
from ..semantic import cosine_similarity, decode_vector
from .types import SearchResult

logger = logging.getLogger(__name__)


def search_vectors(
    conn: sqlite3.Connection,
    project_id: str,
    query_vector: Sequence[float],
    limit: int,
) -> list[SearchResult]:
    """Exhaustive cosine scan over every memory in a project, best first.

    Ties are broken by id so equal scores come back in a stable order. A row
    whose embedding does not decode aborts the scan.
    """

    validate_limit(limit)
    try:
        rows = conn.execute(
            """
            SELECT id, project_id, content, embedding, metadata, created_at, updated_at
            FROM memories
            WHERE project_id = ?
            """,
            (project_id,),
        ).fetchall()
    except sqlite3.Error as exc:
        raise StorageError("vector search", str(exc)) from exc

    scored: list[SearchResult] = []
    for row in rows:
        try:
            similarity = cosine_similarity(query_vector, decode_vector(row["embedding"]))
        except CodecError:
            logger.error("corrupt embedding for memory %s", row["id"])
            raise
        scored.append(
            SearchResult(
                id=row["id"],
                project_id=row["project_id"],
                content=row["content"],
                metadata=row["metadata"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                score=similarity,
            )
        )
    scored.sort(key=lambda item: (-(item.score or 0.0), item.id))
    return scored[:limit]


def find_similar(
    conn: sqlite3.Connection,
    project_id: str,
    vector: Sequence[float],
    threshold: float,
) -> list[SearchResult]:
    candidates = search_vectors(conn, project_id, vector, MAX_SEARCH_LIMIT)
    return [item for item in candidates if item.score is not None and item.score >= threshold]
