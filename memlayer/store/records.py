from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from uuid import uuid4

from ..db import transaction
from ..errors import NotFoundError, StorageError
from ..limits import validate_limit
from ..semantic import encode_vector
from .types import Memory
from .utils import now_iso

logger = logging.getLogger(__name__)

MEMORY_COLUMNS = "id, project_id, content, metadata, created_at, updated_at"


def row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        id=row["id"],
        project_id=row["project_id"],
        content=row["content"],
        metadata=row["metadata"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def insert(
    conn: sqlite3.Connection,
    project_id: str,
    content: str,
    embedding: Sequence[float],
    metadata: str | None = None,
) -> str:
    """Store a new memory; the lexical index row is written by trigger in the same transaction."""

    blob = encode_vector(embedding)
    memory_id = str(uuid4())
    now = now_iso()
    try:
        with transaction(conn):
            conn.execute(
                """
                INSERT INTO memories(id, project_id, content, embedding, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (memory_id, project_id, content, blob, metadata, now, now),
            )
    except sqlite3.Error as exc:
        raise StorageError("insert", str(exc), memory_id) from exc
    logger.debug("inserted memory %s in project %s", memory_id, project_id)
    return memory_id


def get(conn: sqlite3.Connection, memory_id: str) -> Memory | None:
    try:
        row = conn.execute(
            f"SELECT {MEMORY_COLUMNS} FROM memories WHERE id = ?",
            (memory_id,),
        ).fetchone()
    except sqlite3.Error as exc:
        raise StorageError("get", str(exc), memory_id) from exc
    return row_to_memory(row) if row else None


def list_memories(conn: sqlite3.Connection, project_id: str, limit: int) -> list[Memory]:
    validate_limit(limit)
    try:
        rows = conn.execute(
            f"""
            SELECT {MEMORY_COLUMNS}
            FROM memories
            WHERE project_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (project_id, limit),
        ).fetchall()
    except sqlite3.Error as exc:
        raise StorageError("list", str(exc)) from exc
    return [row_to_memory(row) for row in rows]


def update(
    conn: sqlite3.Connection,
    memory_id: str,
    content: str,
    embedding: Sequence[float],
) -> None:
    blob = encode_vector(embedding)
    try:
        with transaction(conn):
            cur = conn.execute(
                """
                UPDATE memories
                SET content = ?, embedding = ?, updated_at = ?
                WHERE id = ?
                """,
                (content, blob, now_iso(), memory_id),
            )
            updated = cur.rowcount
    except sqlite3.Error as exc:
        raise StorageError("update", str(exc), memory_id) from exc
    if updated == 0:
        raise NotFoundError(memory_id)
    logger.debug("updated memory %s", memory_id)


def delete(conn: sqlite3.Connection, memory_id: str) -> bool:
    try:
        with transaction(conn):
            cur = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            deleted = cur.rowcount > 0
    except sqlite3.Error as exc:
        raise StorageError("delete", str(exc), memory_id) from exc
    if deleted:
        logger.debug("deleted memory %s", memory_id)
    return deleted


def count(conn: sqlite3.Connection, project_id: str | None = None) -> int:
    try:
        if project_id is None:
            row = conn.execute("SELECT COUNT(*) FROM memories").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) FROM memories WHERE project_id = ?", (project_id,)
            ).fetchone()
    except sqlite3.Error as exc:
        raise StorageError("count", str(exc)) from exc
    return int(row[0])
