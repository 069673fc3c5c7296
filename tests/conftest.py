from __future__ import annotations

import hashlib
import math
import re
from pathlib import Path

import pytest

from memlayer.config import CONFIG_ENV_OVERRIDES, MemlayerConfig
from memlayer.semantic import EMBEDDING_DIMS
from memlayer.store import MemoryStore

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Deterministic bag-of-words embedder used in place of the ONNX model."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * EMBEDDING_DIMS
        for token in _TOKEN_RE.findall(text.lower()):
            if len(token) > 3 and token.endswith("s"):
                token = token[:-1]
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % EMBEDDING_DIMS] += 1.0
        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0.0:
            return vector
        return [x / norm for x in vector]


@pytest.fixture(autouse=True)
def _isolate_memlayer_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MEMLAYER_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.delenv("MEMLAYER_PROJECT", raising=False)
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def fake_embedding_provider(monkeypatch: pytest.MonkeyPatch) -> HashingEmbedder:
    """Route every store created without an explicit embedder to the hashing embedder."""

    shared = HashingEmbedder()
    monkeypatch.setattr(
        "memlayer.store._store.get_embedding_provider", lambda *args, **kwargs: shared
    )
    return shared


@pytest.fixture
def store(tmp_path: Path, embedder: HashingEmbedder):
    mem_store = MemoryStore(tmp_path / "mem.sqlite", embedder=embedder, config=MemlayerConfig())
    yield mem_store
    mem_store.close()
