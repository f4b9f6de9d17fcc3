"""Shared fixtures: a deterministic embedder so no test needs model weights."""

import hashlib
import re
from pathlib import Path

import numpy as np
import pytest

from docrecall.config import RecallConfig
from docrecall.store import CollectionStore

_TOKEN_RE = re.compile(r"\w+")


class FakeEmbedder:
    """Hashing bag-of-words embedder.

    Each lowercase word bumps one hashed dimension; vectors are L2-normalised,
    so texts sharing words are close in cosine distance.
    """

    def __init__(self, dims: int = 384, model_id: str = "fake-bow"):
        self.dims = dims
        self.model_id = model_id
        self.passage_calls: list[list[str]] = []
        self.query_calls: list[str] = []
        self.probe_calls = 0

    def _vec(self, text: str) -> np.ndarray:
        v = np.zeros(self.dims, dtype=np.float32)
        for tok in _TOKEN_RE.findall(text.lower()):
            h = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16)
            v[h % self.dims] += 1.0
        n = np.linalg.norm(v)
        if n == 0:
            v[0] = 1.0
            return v
        return v / n

    def embed_passages(self, texts):
        self.passage_calls.append(list(texts))
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        return np.vstack([self._vec(t) for t in texts]).astype(np.float32)

    def embed_query(self, query):
        self.query_calls.append(query)
        return self._vec(query)

    def probe_dimension(self):
        self.probe_calls += 1
        return self.dims


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store(tmp_path: Path):
    s = CollectionStore(tmp_path / "index" / "docrecall.sqlite", faiss_index_type="Flat")
    yield s
    s.close()


@pytest.fixture
def cfg(tmp_path: Path) -> RecallConfig:
    return RecallConfig(
        index_dir=tmp_path / "index",
        search_debounce_ms=0,
        faiss_index_type="Flat",
        score_threshold=0.0,
        workers=2,
    )


@pytest.fixture
def docs(tmp_path: Path) -> Path:
    """A small directory of text files on distinct topics."""
    root = tmp_path / "docs"
    root.mkdir()
    (root / "fox.md").write_text("The quick brown fox jumps over the lazy dog.\n", encoding="utf-8")
    (root / "kitchen.txt").write_text("Recipes for sourdough bread and pasta with tomato sauce.\n", encoding="utf-8")
    sub = root / "code"
    sub.mkdir()
    (sub / "server.py").write_text("def serve():\n    return 'http server listening on port 8080'\n", encoding="utf-8")
    (root / "image.bin").write_bytes(b"\x00\x01\x02\xff")
    return root.resolve()
