from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence
import numpy as np

from ..errors import EmbeddingError

logger = logging.getLogger(__name__)

# Instruction-tuned (E5-style) markers. Results degrade badly without them.
QUERY_PREFIX = "query: "
PASSAGE_PREFIX = "passage: "

DIMENSION_PROBE = "dimension probe"

EMBEDDING_MODELS = {
    "AllMiniLML6V2": "sentence-transformers/all-MiniLM-L6-v2",
    "MultilingualE5Small": "intfloat/multilingual-e5-small",
    "MultilingualE5Base": "intfloat/multilingual-e5-base",
}


def resolve_model_id(name: str) -> str:
    """Map a friendly model name to its Hugging Face id; other names pass through."""
    return EMBEDDING_MODELS.get(name, name)


@dataclass
class SentenceTransformersEmbedder:
    model_id: str
    device: str = "cpu"
    batch_size: int = 32
    query_prefix: str = QUERY_PREFIX
    passage_prefix: str = PASSAGE_PREFIX

    def __post_init__(self) -> None:
        # Suppress harmless multiprocessing resource tracker warnings on macOS
        import warnings
        warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

        from sentence_transformers import SentenceTransformer  # type: ignore

        model_to_load = resolve_model_id(self.model_id)
        logger.info(f"Loading embedding model: {model_to_load} on {self.device}")
        self._model = SentenceTransformer(model_to_load, device=self.device)

    def _encode(self, texts: list[str], batch_size: int) -> np.ndarray:
        try:
            out = self._model.encode(texts, batch_size=batch_size, convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e
        return np.asarray(out, dtype=np.float32)

    def embed_passages(self, texts: Sequence[str]) -> np.ndarray:
        """Embed document chunks with the passage marker."""
        prefixed = [self.passage_prefix + t for t in texts]
        return self._encode(prefixed, self.batch_size)

    def embed_query(self, query: str) -> np.ndarray:
        """Embed a search query with the query marker."""
        out = self._encode([self.query_prefix + query], 1)
        if len(out) == 0:
            raise EmbeddingError("Empty embedding result")
        return out[0]

    def probe_dimension(self) -> int:
        """Learn the model's output width from a throwaway encode."""
        out = self._encode([DIMENSION_PROBE], 1)
        if out.ndim != 2 or out.shape[0] == 0:
            raise EmbeddingError("No vector returned from dimension probe")
        return int(out.shape[1])
