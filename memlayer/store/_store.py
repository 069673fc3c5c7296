from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType

from .. import db
from ..config import MemlayerConfig, load_config, validate_config
from ..decay import DecayConfig, apply_recency_weight
from ..errors import NotFoundError, StorageError, ValidationError
from ..fusion import rrf_fuse
from ..limits import (
    MAX_INPUT_LENGTH,
    candidate_pool_size,
    validate_limit,
    validate_memory_id,
    validate_project,
    validate_recency_weight,
    validate_text,
)
from ..semantic import EmbeddingProvider, get_embedding_provider
from . import lexical as store_lexical
from . import records as store_records
from . import vectors as store_vectors
from .types import Added, ConflictMemory, Conflicts, Memory, SearchResult
from .utils import parse_iso8601

logger = logging.getLogger(__name__)


class MemoryStore:
    """Project-scoped memory store with semantic, lexical and fused search.

    Owns one SQLite connection and one embedding provider. Neither is shared
    with other stores; open one store per thread of work.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        embedder: EmbeddingProvider | None = None,
        config: MemlayerConfig | None = None,
        check_same_thread: bool = True,
    ):
        self.config = validate_config(config or load_config())
        self.decay = self.config.decay_config()
        if str(db_path) == db.MEMORY_DB:
            self.db_path: Path | str = db.MEMORY_DB
        else:
            self.db_path = db.resolve_db_path(db_path)
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        try:
            db.initialize_schema(self.conn)
        except Exception:
            self.conn.close()
            raise
        self._embedder = embedder

    @property
    def embedder(self) -> EmbeddingProvider:
        # Model load is slow; get/list/delete never need it.
        if self._embedder is None:
            self._embedder = get_embedding_provider(
                self.config.embedding_model, self.config.model_cache
            )
        return self._embedder

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    def add(
        self,
        project: str,
        content: str,
        metadata: str | None = None,
        force: bool = False,
    ) -> Added | Conflicts:
        """Embed and store content unless a near-duplicate already exists.

        Without ``force``, any memory in the project whose cosine similarity is
        at or above ``config.similarity_threshold`` is reported back as a
        conflict and nothing is written.
        """

        project = validate_project(project)
        content = validate_text(content, what="Content")
        metadata = self._validate_metadata(metadata)
        vector = self.embedder.embed(content)
        if not force:
            similar = store_vectors.find_similar(
                self.conn, project, vector, self.config.similarity_threshold
            )
            if similar:
                logger.debug("add blocked by %s similar memories", len(similar))
                return Conflicts(
                    proposed=content,
                    conflicts=[
                        ConflictMemory(
                            id=item.id, content=item.content, similarity=float(item.score or 0.0)
                        )
                        for item in similar
                    ],
                )
        memory_id = store_records.insert(self.conn, project, content, vector, metadata)
        return Added(id=memory_id)

    def search(
        self,
        project: str,
        query: str,
        limit: int = 5,
        recency_weight: float = 0.0,
    ) -> list[SearchResult]:
        project = validate_project(project)
        query = validate_text(query, what="Query")
        validate_limit(limit)
        weight = validate_recency_weight(recency_weight)
        vector = self.embedder.embed(query)
        results = store_vectors.search_vectors(self.conn, project, vector, limit)
        if weight > 0.0:
            results = self._apply_recency(results, weight)
        return results

    def search_hybrid(
        self,
        project: str,
        query: str,
        limit: int = 5,
        recency_weight: float = 0.0,
    ) -> list[SearchResult]:
        """Fuse semantic and lexical rankings with Reciprocal Rank Fusion.

        Both retrievers draw from a candidate pool larger than ``limit`` so
        items ranked moderately by both can still surface after fusion.
        """

        project = validate_project(project)
        query = validate_text(query, what="Query")
        validate_limit(limit)
        weight = validate_recency_weight(recency_weight)
        vector = self.embedder.embed(query)
        pool = candidate_pool_size(
            limit,
            multiplier=self.config.candidate_multiplier,
            minimum=self.config.candidate_pool_min,
        )
        semantic = store_vectors.search_vectors(self.conn, project, vector, pool)
        lexical = store_lexical.search_lexical(self.conn, project, query, pool)
        fused = rrf_fuse([semantic, lexical], k=self.config.rrf_k)
        if weight > 0.0:
            fused = self._apply_recency(fused, weight)
        return fused[:limit]

    def search_lexical(self, project: str, query: str, limit: int = 5) -> list[SearchResult]:
        """Keyword search; a blank query matches nothing and returns []."""

        project = validate_project(project)
        validate_limit(limit)
        return store_lexical.search_lexical(self.conn, project, query, limit)

    def get(self, memory_id: str) -> Memory | None:
        return store_records.get(self.conn, validate_memory_id(memory_id))

    def list(self, project: str, limit: int = 10) -> list[Memory]:
        return store_records.list_memories(self.conn, validate_project(project), limit)

    def update(self, memory_id: str, content: str) -> None:
        memory_id = validate_memory_id(memory_id)
        content = validate_text(content, what="Content")
        if store_records.get(self.conn, memory_id) is None:
            raise NotFoundError(memory_id)
        vector = self.embedder.embed(content)
        store_records.update(self.conn, memory_id, content, vector)

    def delete(self, memory_id: str) -> bool:
        return store_records.delete(self.conn, validate_memory_id(memory_id))

    def count(self, project: str | None = None) -> int:
        if project is not None:
            project = validate_project(project)
        return store_records.count(self.conn, project)

    def reindex(self) -> str:
        """Rebuild the lexical index from the memories table and verify row counts."""

        return db.initialize_index(self.conn, force_rebuild=True)

    def _validate_metadata(self, metadata: str | None) -> str | None:
        if metadata is None:
            return None
        if len(metadata) > MAX_INPUT_LENGTH:
            raise ValidationError(
                f"Metadata too long: {len(metadata)} characters (max {MAX_INPUT_LENGTH})"
            )
        return metadata

    def _apply_recency(self, results: list[SearchResult], weight: float) -> list[SearchResult]:
        return rescore_with_recency(results, weight, self.decay)


def rescore_with_recency(
    results: list[SearchResult], weight: float, decay: DecayConfig
) -> list[SearchResult]:
    for item in results:
        created_at = parse_iso8601(item.created_at)
        if created_at is None:
            raise StorageError(
                "recency scoring", f"invalid created_at timestamp {item.created_at!r}", item.id
            )
        item.score = apply_recency_weight(item.score or 0.0, created_at, weight, decay)
    results.sort(key=lambda item: (-(item.score or 0.0), item.id))
    return results
