from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .errors import ConsistencyError, StorageError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".memlayer" / "memories.db"
SCHEMA_VERSION = 2
MEMORY_DB = ":memory:"

FTS_TABLE = "memories_fts"
FTS_TRIGGERS = ("memories_fts_insert", "memories_fts_delete", "memories_fts_update")

_CREATE_FTS = f"""
CREATE VIRTUAL TABLE {FTS_TABLE} USING fts5(
    content,
    project_id UNINDEXED,
    tokenize='porter unicode61',
    content='memories',
    content_rowid='rowid'
)
"""

_CREATE_TRIGGERS = (
    f"""
    CREATE TRIGGER IF NOT EXISTS memories_fts_insert AFTER INSERT ON memories BEGIN
        INSERT INTO {FTS_TABLE}(rowid, content, project_id)
        VALUES (new.rowid, new.content, new.project_id);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS memories_fts_delete AFTER DELETE ON memories BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, content, project_id)
        VALUES ('delete', old.rowid, old.content, old.project_id);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS memories_fts_update AFTER UPDATE ON memories BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, content, project_id)
        VALUES ('delete', old.rowid, old.content, old.project_id);
        INSERT INTO {FTS_TABLE}(rowid, content, project_id)
        VALUES (new.rowid, new.content, new.project_id);
    END
    """,
)


def resolve_db_path(db_path: Path | str) -> Path:
    """Reject traversal components and pin the database to its real parent directory."""

    path = Path(db_path).expanduser()
    if not str(db_path).strip():
        raise ValidationError("Database path cannot be empty")
    if ".." in path.parts:
        raise ValidationError(f"Database path must not contain '..' components: {db_path}")
    parent = path.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        real_parent = parent.resolve(strict=True)
    except OSError as exc:
        raise StorageError("open", f"cannot prepare directory {parent}: {exc}") from exc
    return real_parent / path.name


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    in_memory = str(db_path) == MEMORY_DB
    target: Path | str = MEMORY_DB if in_memory else resolve_db_path(db_path)
    try:
        # Transactions are opened explicitly, see transaction().
        conn = sqlite3.connect(target, check_same_thread=check_same_thread, isolation_level=None)
    except sqlite3.Error as exc:
        raise StorageError("open", str(exc)) from exc
    conn.row_factory = sqlite3.Row
    try:
        if not in_memory:
            try:
                conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.OperationalError:
                conn.execute("PRAGMA journal_mode = DELETE")
            conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.Error as exc:
        conn.close()
        raise StorageError("open", str(exc)) from exc
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block as one unit of work; nested use joins the outer transaction."""

    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def initialize_schema(conn: sqlite3.Connection) -> None:
    try:
        with transaction(conn):
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    metadata TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_project ON memories(project_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memories_project_created "
                "ON memories(project_id, created_at DESC)"
            )
    except sqlite3.Error as exc:
        raise StorageError("initialize schema", str(exc)) from exc
    initialize_index(conn)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")


def initialize_index(conn: sqlite3.Connection, *, force_rebuild: bool = False) -> str:
    """Create, repair or verify the lexical index.

    Returns one of ``created``, ``rebuilt``, ``triggers`` or ``ok``. A rebuild
    runs in a single transaction and is rolled back if the indexed row count
    does not match the memories table afterwards.
    """

    try:
        if not _table_exists(conn, "memories"):
            raise ConsistencyError("Content table 'memories' does not exist")
        if not _table_exists(conn, FTS_TABLE):
            action = "created"
        elif force_rebuild:
            action = "rebuilt"
        elif not _has_column(conn, FTS_TABLE, "project_id"):
            logger.info("lexical index schema is outdated; rebuilding")
            action = "rebuilt"
        else:
            memory_count = _count_memories(conn)
            indexed_count = _indexed_count(conn)
            if indexed_count != memory_count:
                logger.warning(
                    "lexical index drift detected: %s memories, %s indexed; rebuilding",
                    memory_count,
                    indexed_count,
                )
                action = "rebuilt"
            elif _missing_triggers(conn):
                logger.warning("lexical index triggers missing; recreating")
                with transaction(conn):
                    for statement in _CREATE_TRIGGERS:
                        conn.execute(statement)
                return "triggers"
            else:
                return "ok"

        with transaction(conn):
            _drop_index(conn)
            conn.execute(_CREATE_FTS)
            for statement in _CREATE_TRIGGERS:
                conn.execute(statement)
            _populate_index(conn)
            memory_count = _count_memories(conn)
            indexed_count = _indexed_count(conn)
            if indexed_count != memory_count:
                raise ConsistencyError(
                    f"Lexical index migration incomplete: expected {memory_count} rows, "
                    f"got {indexed_count} rows"
                )
    except sqlite3.Error as exc:
        raise StorageError("initialize index", str(exc)) from exc
    logger.info("lexical index %s (%s rows)", action, memory_count)
    return action


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    return column in existing


def _missing_triggers(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'trigger'").fetchall()
    present = {row[0] for row in rows}
    return [name for name in FTS_TRIGGERS if name not in present]


def _count_memories(conn: sqlite3.Connection) -> int:
    return int(conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0])


def _indexed_count(conn: sqlite3.Connection) -> int:
    # An external-content table reads COUNT(*) through to 'memories', so count
    # the index's own per-document shadow rows instead.
    shadow = f"{FTS_TABLE}_docsize"
    if not _table_exists(conn, shadow):
        return -1
    return int(conn.execute(f"SELECT COUNT(*) FROM {shadow}").fetchone()[0])


def _drop_index(conn: sqlite3.Connection) -> None:
    for name in FTS_TRIGGERS:
        conn.execute(f"DROP TRIGGER IF EXISTS {name}")
    conn.execute(f"DROP TABLE IF EXISTS {FTS_TABLE}")


def _populate_index(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        INSERT INTO {FTS_TABLE}(rowid, content, project_id)
        SELECT rowid, content, project_id FROM memories
        """
    )


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
