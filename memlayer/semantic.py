from __future__ import annotations

import logging
import math
import struct
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .errors import (
    DimensionMismatch,
    EmbeddingError,
    EmptyVector,
    InvalidBlobSize,
    InvalidEmbedding,
)

logger = logging.getLogger(__name__)

EMBEDDING_DIMS = 384
EMBEDDING_BLOB_SIZE = EMBEDDING_DIMS * 4
DEFAULT_EMBEDDING_MODEL = "BAAI/bge-small-en-v1.5"

_BLOB_FORMAT = f"<{EMBEDDING_DIMS}f"


def encode_vector(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32 values."""

    if len(vector) != EMBEDDING_DIMS:
        raise DimensionMismatch(EMBEDDING_DIMS, len(vector))
    try:
        return struct.pack(_BLOB_FORMAT, *vector)
    except (struct.error, OverflowError) as exc:
        raise InvalidEmbedding(f"Vector cannot be stored as float32: {exc}") from exc


def decode_vector(blob: bytes) -> list[float]:
    if len(blob) != EMBEDDING_BLOB_SIZE:
        raise InvalidBlobSize(EMBEDDING_BLOB_SIZE, len(blob))
    return list(struct.unpack(_BLOB_FORMAT, blob))


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if not vec_a or not vec_b:
        raise EmptyVector()
    if len(vec_a) != len(vec_b):
        raise DimensionMismatch(len(vec_a), len(vec_b))
    if not all(math.isfinite(x) for x in vec_a) or not all(math.isfinite(x) for x in vec_b):
        raise InvalidEmbedding("Vector contains NaN or infinite values")
    dot = math.fsum(a * b for a, b in zip(vec_a, vec_b, strict=True))
    norm_a = math.sqrt(math.fsum(a * a for a in vec_a))
    norm_b = math.sqrt(math.fsum(b * b for b in vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    # Rounding can push identical vectors a hair past 1.0.
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def l2_normalize(vector: Sequence[float]) -> list[float]:
    norm = math.sqrt(math.fsum(x * x for x in vector))
    if norm == 0.0:
        return [0.0] * len(vector)
    return [float(x) / norm for x in vector]


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> list[float]: ...


class FastEmbedProvider:
    """fastembed-backed provider.

    The underlying ONNX session keeps mutable inference buffers, so calls are
    serialized with a lock. Give each MemoryStore its own instance.
    """

    def __init__(self, model: str = DEFAULT_EMBEDDING_MODEL, cache_dir: Path | str | None = None):
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise EmbeddingError("fastembed is required for semantic search") from exc
        self.model = model
        self._lock = threading.Lock()
        try:
            self._embedder = TextEmbedding(
                model_name=model,
                cache_dir=str(Path(cache_dir).expanduser()) if cache_dir else None,
            )
        except Exception as exc:
            logger.exception("embedding model init failed: %s", model)
            raise EmbeddingError(f"Failed to load embedding model {model}: {exc}") from exc

    def embed(self, text: str) -> list[float]:
        if not text.strip():
            return [0.0] * EMBEDDING_DIMS
        with self._lock:
            try:
                vectors = list(self._embedder.embed([text]))
            except Exception as exc:
                raise EmbeddingError(f"Embedding inference failed: {exc}") from exc
        if not vectors:
            raise EmbeddingError("Embedding model returned no vectors")
        vector = [float(x) for x in vectors[0]]
        if len(vector) != EMBEDDING_DIMS:
            raise EmbeddingError(
                f"Model {self.model} produced {len(vector)} dimensions, expected {EMBEDDING_DIMS}"
            )
        return l2_normalize(vector)


def get_embedding_provider(
    model: str = DEFAULT_EMBEDDING_MODEL, cache_dir: Path | str | None = None
) -> EmbeddingProvider:
    return FastEmbedProvider(model=model, cache_dir=cache_dir)
