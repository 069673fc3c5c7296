from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from memlayer import db
from memlayer.config import MemlayerConfig
from memlayer.errors import InvalidBlobSize, NotFoundError, ValidationError
from memlayer.limits import MAX_INPUT_LENGTH, MAX_SEARCH_LIMIT
from memlayer.store import Added, Conflicts, MemoryStore
from memlayer.store.lexical import escape_fts_query
from memlayer.store.utils import parse_iso8601


def _indexed_rows(store: MemoryStore) -> int:
    return int(store.conn.execute("SELECT COUNT(*) FROM memories_fts_docsize").fetchone()[0])


def _backdate(store: MemoryStore, memory_id: str, days: int) -> None:
    stamp = (dt.datetime.now(dt.UTC) - dt.timedelta(days=days)).isoformat()
    store.conn.execute(
        "UPDATE memories SET created_at = ?, updated_at = ? WHERE id = ?",
        (stamp, stamp, memory_id),
    )


def test_add_then_get_round_trips_fields(store: MemoryStore) -> None:
    outcome = store.add("proj", "  Alice works at Microsoft  ", metadata='{"source": "chat"}')
    assert isinstance(outcome, Added)

    memory = store.get(outcome.id)
    assert memory is not None
    assert memory.id == outcome.id
    assert memory.project_id == "proj"
    assert memory.content == "Alice works at Microsoft"
    assert memory.metadata == '{"source": "chat"}'
    assert memory.created_at == memory.updated_at
    assert parse_iso8601(memory.created_at) is not None


def test_get_missing_returns_none(store: MemoryStore) -> None:
    assert store.get("does-not-exist") is None


def test_semantic_search_finds_alice(store: MemoryStore) -> None:
    alice = store.add("proj", "Alice works at Microsoft")
    store.add("proj", "The build uses a nightly toolchain")
    store.add("proj", "Deploys happen every Tuesday")
    assert isinstance(alice, Added)

    results = store.search("proj", "where does alice work", limit=5)

    assert results
    assert results[0].id == alice.id
    assert results[0].score is not None
    assert -1.0 <= results[0].score <= 1.0


def test_semantic_search_single_memory_returns_exactly_it(store: MemoryStore) -> None:
    store.add("proj", "Alice works at Microsoft")

    results = store.search("proj", "where does alice work", 10, 0.0)

    assert len(results) == 1
    assert results[0].content == "Alice works at Microsoft"


def test_search_is_scoped_to_project(store: MemoryStore) -> None:
    store.add("proj-a", "Alice works at Microsoft")
    other = store.add("proj-b", "Alice works at Microsoft")
    assert isinstance(other, Added)

    results = store.search("proj-b", "alice", limit=10)
    assert [item.id for item in results] == [other.id]
    assert store.search("proj-c", "alice", limit=10) == []


def test_similar_content_returns_conflicts_without_writing(store: MemoryStore) -> None:
    first = store.add("proj", "Alice works at Microsoft")
    assert isinstance(first, Added)
    before = store.count("proj")

    outcome = store.add("proj", "alice works at microsoft")

    assert isinstance(outcome, Conflicts)
    assert outcome.proposed == "alice works at microsoft"
    assert [item.id for item in outcome.conflicts] == [first.id]
    assert outcome.conflicts[0].similarity >= 0.85
    assert outcome.conflicts[0].content == "Alice works at Microsoft"
    assert store.count("proj") == before


def test_force_always_inserts(store: MemoryStore) -> None:
    store.add("proj", "Alice works at Microsoft")
    outcome = store.add("proj", "Alice works at Microsoft", force=True)
    assert isinstance(outcome, Added)
    assert store.count("proj") == 2


def test_conflicts_do_not_cross_projects(store: MemoryStore) -> None:
    store.add("proj-a", "Alice works at Microsoft")
    assert isinstance(store.add("proj-b", "Alice works at Microsoft"), Added)


def test_similarity_threshold_comes_from_config(tmp_path: Path, embedder) -> None:
    config = MemlayerConfig(similarity_threshold=1.0)
    with MemoryStore(tmp_path / "mem.sqlite", embedder=embedder, config=config) as strict:
        strict.add("proj", "Alice works at Microsoft today")
        outcome = strict.add("proj", "Alice works at Microsoft")
        assert isinstance(outcome, Added)


@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
def test_add_rejects_blank_content(store: MemoryStore, content: str) -> None:
    with pytest.raises(ValidationError, match="cannot be empty"):
        store.add("proj", content)


def test_add_accepts_content_at_max_length(store: MemoryStore) -> None:
    outcome = store.add("proj", "a" * MAX_INPUT_LENGTH)
    assert isinstance(outcome, Added)


def test_add_rejects_content_one_over_max_length(store: MemoryStore) -> None:
    with pytest.raises(ValidationError, match="too long"):
        store.add("proj", "a" * (MAX_INPUT_LENGTH + 1))
    assert store.count() == 0


def test_length_bound_applies_to_trimmed_text(store: MemoryStore) -> None:
    outcome = store.add("proj", " " + "a" * MAX_INPUT_LENGTH)
    assert isinstance(outcome, Added)
    memory = store.get(outcome.id)
    assert memory is not None
    assert len(memory.content) == MAX_INPUT_LENGTH

    results = store.search("proj", "a" * MAX_INPUT_LENGTH + "\n", limit=1)
    assert [item.id for item in results] == [outcome.id]


def test_add_rejects_blank_project(store: MemoryStore) -> None:
    with pytest.raises(ValidationError):
        store.add("  ", "content")


@pytest.mark.parametrize("limit", [0, -1, MAX_SEARCH_LIMIT + 1])
def test_limit_guard_rejects_out_of_range(store: MemoryStore, limit: int) -> None:
    with pytest.raises(ValidationError, match="Limit"):
        store.search("proj", "query", limit=limit)
    with pytest.raises(ValidationError, match="Limit"):
        store.search_hybrid("proj", "query", limit=limit)
    with pytest.raises(ValidationError, match="Limit"):
        store.list("proj", limit=limit)


def test_limit_guard_accepts_maximum(store: MemoryStore) -> None:
    store.add("proj", "Alice works at Microsoft")
    assert len(store.search("proj", "alice", limit=MAX_SEARCH_LIMIT)) == 1
    assert len(store.search_hybrid("proj", "alice", limit=MAX_SEARCH_LIMIT)) == 1
    assert len(store.list("proj", limit=MAX_SEARCH_LIMIT)) == 1


def test_search_rejects_blank_and_oversized_queries(store: MemoryStore) -> None:
    with pytest.raises(ValidationError):
        store.search("proj", "   ")
    with pytest.raises(ValidationError):
        store.search_hybrid("proj", "q" * (MAX_INPUT_LENGTH + 1))


@pytest.mark.parametrize("weight", [-0.1, 1.5, float("nan")])
def test_search_rejects_invalid_recency_weight(store: MemoryStore, weight: float) -> None:
    with pytest.raises(ValidationError, match="recency weight"):
        store.search("proj", "query", recency_weight=weight)
    with pytest.raises(ValidationError, match="recency weight"):
        store.search_hybrid("proj", "query", recency_weight=weight)


def test_validation_happens_before_embedding(store: MemoryStore, embedder) -> None:
    with pytest.raises(ValidationError):
        store.search("proj", "query", limit=0)
    assert embedder.calls == []


def test_recency_weight_prefers_newer_memory(store: MemoryStore) -> None:
    old = store.add("proj", "deploy checklist for staging", force=True)
    new = store.add("proj", "deploy checklist for staging", force=True)
    assert isinstance(old, Added) and isinstance(new, Added)
    _backdate(store, old.id, days=60)

    results = store.search("proj", "deploy checklist", limit=2, recency_weight=0.5)

    assert [item.id for item in results] == [new.id, old.id]
    assert results[0].score > results[1].score


def test_hybrid_search_ranks_rust_memory_first(store: MemoryStore) -> None:
    rust = store.add("proj", "Rust is a systems programming language")
    store.add("proj", "Python is great for data science")
    store.add("proj", "JavaScript runs in web browsers")
    assert isinstance(rust, Added)

    results = store.search_hybrid("proj", "rust", limit=3)

    assert results[0].id == rust.id
    assert len(results) <= 3
    scores = [item.score for item in results]
    assert scores == sorted(scores, reverse=True)


def test_hybrid_search_truncates_to_limit(store: MemoryStore) -> None:
    for i in range(6):
        store.add("proj", f"note number {i} about caching layer {i}", force=True)
    assert len(store.search_hybrid("proj", "caching", limit=2)) == 2


def test_lexical_search_treats_operators_as_literals(store: MemoryStore) -> None:
    store.add("proj", "Use NEAR queries carefully")
    for query in ['rust AND "python', "NEAR(", "content:foo", "a* OR b", '"unterminated']:
        store.search_lexical("proj", query, limit=5)
    results = store.search_lexical("proj", "near", limit=5)
    assert len(results) == 1


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ('a "b" NEAR(', '"a" """b""" "NEAR("'),
        ("rust AND python", '"rust" "AND" "python"'),
        ("path\\to", '"path\\\\to"'),
        ("  ", ""),
    ],
)
def test_escape_fts_query_quotes_each_token(query: str, expected: str) -> None:
    assert escape_fts_query(query) == expected


@pytest.mark.parametrize("query", ["", "   ", "\n\t"])
def test_lexical_search_blank_query_returns_empty(store: MemoryStore, query: str) -> None:
    store.add("proj", "anything at all")
    assert store.search_lexical("proj", query, 5) == []


def test_lexical_search_still_checks_limit_and_project(store: MemoryStore) -> None:
    with pytest.raises(ValidationError, match="Limit"):
        store.search_lexical("proj", "   ", 0)
    with pytest.raises(ValidationError):
        store.search_lexical("  ", "anything", 5)


def test_lexical_scores_are_raw_bm25(store: MemoryStore) -> None:
    store.add("proj", "sqlite full text search with bm25 ranking")
    results = store.search_lexical("proj", "bm25", limit=5)
    assert len(results) == 1
    assert results[0].score is not None
    assert results[0].score < 0.0


def test_update_changes_content_and_keeps_identity(store: MemoryStore) -> None:
    outcome = store.add("proj", "Alice works at Microsoft")
    assert isinstance(outcome, Added)
    before = store.get(outcome.id)
    assert before is not None

    store.update(outcome.id, "Alice moved to a new role at Contoso")

    after = store.get(outcome.id)
    assert after is not None
    assert after.content == "Alice moved to a new role at Contoso"
    assert after.project_id == before.project_id
    assert after.created_at == before.created_at
    assert after.updated_at >= after.created_at
    assert store.search_lexical("proj", "contoso", limit=5)[0].id == outcome.id
    assert store.search_lexical("proj", "microsoft", limit=5) == []
    assert _indexed_rows(store) == store.count()


def test_update_missing_raises_not_found(store: MemoryStore) -> None:
    with pytest.raises(NotFoundError, match="Memory not found: nope"):
        store.update("nope", "new content")


def test_update_rejects_blank_content(store: MemoryStore) -> None:
    outcome = store.add("proj", "Alice works at Microsoft")
    assert isinstance(outcome, Added)
    with pytest.raises(ValidationError):
        store.update(outcome.id, " ")


def test_delete_removes_from_records_and_index(store: MemoryStore) -> None:
    outcome = store.add("proj", "ephemeral note about redis")
    assert isinstance(outcome, Added)

    assert store.delete(outcome.id) is True
    assert store.get(outcome.id) is None
    assert store.search_lexical("proj", "redis", limit=5) == []
    assert _indexed_rows(store) == 0
    assert store.delete(outcome.id) is False


def test_blank_ids_are_rejected(store: MemoryStore) -> None:
    with pytest.raises(ValidationError):
        store.get(" ")
    with pytest.raises(ValidationError):
        store.delete("")


def test_list_orders_newest_first(store: MemoryStore) -> None:
    first = store.add("proj", "first note about queues", force=True)
    second = store.add("proj", "second note about caches", force=True)
    third = store.add("proj", "third note about indexes", force=True)
    assert isinstance(first, Added) and isinstance(second, Added) and isinstance(third, Added)
    _backdate(store, first.id, days=2)
    _backdate(store, second.id, days=1)

    listed = store.list("proj", limit=10)

    assert [item.id for item in listed] == [third.id, second.id, first.id]
    assert [item.id for item in store.list("proj", limit=1)] == [third.id]
    assert store.list("other", limit=10) == []


def test_index_stays_in_sync_across_writes(store: MemoryStore) -> None:
    ids = []
    for text in ("alpha note", "beta record", "gamma entry"):
        outcome = store.add("proj", text, force=True)
        assert isinstance(outcome, Added)
        ids.append(outcome.id)
    store.update(ids[0], "alpha note revised")
    store.delete(ids[1])
    assert _indexed_rows(store) == store.count() == 2


def test_corrupt_embedding_aborts_search(store: MemoryStore) -> None:
    outcome = store.add("proj", "Alice works at Microsoft")
    assert isinstance(outcome, Added)
    store.conn.execute(
        "UPDATE memories SET embedding = ? WHERE id = ?", (b"\x00" * 10, outcome.id)
    )

    with pytest.raises(InvalidBlobSize):
        store.search("proj", "alice")


def test_reindex_rebuilds_index(store: MemoryStore) -> None:
    store.add("proj", "sqlite reindex target", force=True)
    assert store.reindex() == "rebuilt"
    assert _indexed_rows(store) == 1
    assert len(store.search_lexical("proj", "reindex", limit=5)) == 1


def test_store_reopens_existing_database(tmp_path: Path, embedder) -> None:
    path = tmp_path / "mem.sqlite"
    with MemoryStore(path, embedder=embedder, config=MemlayerConfig()) as first:
        outcome = first.add("proj", "persisted across sessions")
    assert isinstance(outcome, Added)

    with MemoryStore(path, embedder=embedder, config=MemlayerConfig()) as second:
        assert second.get(outcome.id) is not None
        assert db.initialize_index(second.conn) == "ok"


def test_store_loads_embedding_provider_lazily(tmp_path: Path, fake_embedding_provider) -> None:
    with MemoryStore(tmp_path / "mem.sqlite", config=MemlayerConfig()) as lazy:
        assert lazy.list("proj", limit=5) == []
        assert fake_embedding_provider.calls == []
        lazy.add("proj", "hello lazy provider")
        assert fake_embedding_provider.calls == ["hello lazy provider"]


def test_db_path_is_resolved_through_symlinked_directory(tmp_path: Path, embedder) -> None:
    real_dir = tmp_path / "real"
    real_dir.mkdir()
    link_dir = tmp_path / "link"
    link_dir.symlink_to(real_dir, target_is_directory=True)

    with MemoryStore(link_dir / "mem.sqlite", embedder=embedder, config=MemlayerConfig()) as linked:
        assert linked.db_path == real_dir.resolve() / "mem.sqlite"
    assert (real_dir / "mem.sqlite").exists()


def test_in_memory_database_path_is_kept(embedder) -> None:
    with MemoryStore(db.MEMORY_DB, embedder=embedder, config=MemlayerConfig()) as scratch:
        assert scratch.db_path == db.MEMORY_DB
        assert scratch.count() == 0
