from __future__ import annotations

import sqlite3

from ..errors import StorageError
from ..limits import validate_limit
from .types import SearchResult


def escape_fts_query(query: str) -> str:
    """Quote every whitespace-separated token so FTS5 reads it as a literal phrase.

    Operators such as AND, NEAR, ``*`` or ``column:`` lose their meaning and the
    quoted tokens are joined with spaces, which FTS5 treats as implicit AND.
    """

    tokens = []
    for token in query.split():
        escaped = token.replace("\\", "\\\\").replace('"', '""')
        tokens.append(f'"{escaped}"')
    return " ".join(tokens)


def search_lexical(
    conn: sqlite3.Connection, project_id: str, query: str, limit: int
) -> list[SearchResult]:
    validate_limit(limit)
    match = escape_fts_query(query)
    if not match:
        return []
    try:
        rows = conn.execute(
            """
            SELECT m.id, m.project_id, m.content, m.metadata, m.created_at, m.updated_at,
                bm25(memories_fts) AS score
            FROM memories_fts
            JOIN memories m ON m.rowid = memories_fts.rowid
            WHERE memories_fts MATCH ? AND m.project_id = ?
            ORDER BY score ASC, m.id ASC
            LIMIT ?
            """,
            (match, project_id, limit),
        ).fetchall()
    except sqlite3.Error as exc:
        raise StorageError("lexical search", str(exc)) from exc
    return [
        SearchResult(
            id=row["id"],
            project_id=row["project_id"],
            content=row["content"],
            metadata=row["metadata"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            score=float(row["score"]),
        )
        for row in rows
    ]
