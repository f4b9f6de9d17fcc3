"""FAISS approximate nearest neighbor index over one collection's rows."""
from __future__ import annotations

import logging
import pickle
import threading
from dataclasses import dataclass
from pathlib import Path

import faiss  # type: ignore
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class FAISSIndex:
    """Cosine ANN index keyed by row id.

    Supports multiple index types:
    - Flat: exact search, best for small tables
    - IVF: inverted file index, good for 10K-1M vectors
    - HNSW: graph index, good for 100K+ vectors

    Vectors are L2-normalised and searched by inner product; :meth:`search`
    reports cosine distance (1 - similarity) so callers see the same scale
    as the brute-force path.
    """

    embedding_dim: int
    index_type: str = "IVF"
    nlist: int = 100
    nprobe: int = 10

    def __post_init__(self):
        self._lock = threading.Lock()
        self._trained = False

        if self.index_type == "Flat":
            self.index = faiss.IndexFlatIP(self.embedding_dim)
        elif self.index_type == "IVF":
            quantizer = faiss.IndexFlatIP(self.embedding_dim)
            self.index = faiss.IndexIVFFlat(quantizer, self.embedding_dim, self.nlist, faiss.METRIC_INNER_PRODUCT)
            self.index.nprobe = self.nprobe
        elif self.index_type == "HNSW":
            self.index = faiss.IndexHNSWFlat(self.embedding_dim, 32, faiss.METRIC_INNER_PRODUCT)
        else:
            raise ValueError(f"Unknown FAISS index type: {self.index_type}")

        # FAISS positions -> table row ids
        self.row_ids: list[int] = []

    def add(self, row_ids: list[int], vectors: np.ndarray) -> None:
        with self._lock:
            if vectors.shape[0] != len(row_ids):
                raise ValueError(f"Mismatch: {len(row_ids)} ids but {vectors.shape[0]} vectors")

            vectors = np.ascontiguousarray(vectors, dtype=np.float32)
            faiss.normalize_L2(vectors)

            if self.index_type == "IVF" and not self._trained:
                if vectors.shape[0] < self.nlist:
                    logger.warning(f"Only {vectors.shape[0]} vectors, but {self.nlist} clusters requested. Using Flat index.")
                    self.index = faiss.IndexFlatIP(self.embedding_dim)
                else:
                    self.index.train(vectors)
                self._trained = True

            self.index.add(vectors)
            self.row_ids.extend(int(r) for r in row_ids)

    def search(self, query_vector: np.ndarray, k: int) -> list[tuple[int, float]]:
        """Return up to ``k`` ``(row_id, cosine_distance)`` pairs, nearest first."""
        with self._lock:
            if not self.row_ids:
                return []

            query = np.ascontiguousarray(query_vector.reshape(1, -1), dtype=np.float32)
            faiss.normalize_L2(query)

            k_actual = min(k, len(self.row_ids))
            sims, indices = self.index.search(query, k_actual)

            out: list[tuple[int, float]] = []
            for sim, idx in zip(sims[0], indices[0]):
                # IVF can return -1 when probed lists hold fewer than k vectors
                if idx < 0 or idx >= len(self.row_ids):
                    continue
                out.append((self.row_ids[idx], 1.0 - float(sim)))
            return out

    def save(self, path: Path) -> None:
        with self._lock:
            path.mkdir(parents=True, exist_ok=True)
            faiss.write_index(self.index, str(path / "faiss.index"))
            with open(path / "row_ids.pkl", "wb") as f:
                pickle.dump(self.row_ids, f)
            metadata = {
                "index_type": self.index_type,
                "nlist": self.nlist,
                "nprobe": self.nprobe,
                "embedding_dim": self.embedding_dim,
                "num_vectors": len(self.row_ids),
            }
            with open(path / "metadata.pkl", "wb") as f:
                pickle.dump(metadata, f)

    def load(self, path: Path) -> None:
        with self._lock:
            if not (path / "faiss.index").exists():
                raise FileNotFoundError(f"FAISS index not found at {path / 'faiss.index'}")
            self.index = faiss.read_index(str(path / "faiss.index"))
            with open(path / "row_ids.pkl", "rb") as f:
                self.row_ids = pickle.load(f)
            # IVF builds that fell back to Flat have no nprobe
            if hasattr(self.index, "nprobe"):
                self.index.nprobe = self.nprobe
            self._trained = True

    @property
    def max_row_id(self) -> int:
        return max(self.row_ids) if self.row_ids else 0

    def size(self) -> int:
        return len(self.row_ids)
