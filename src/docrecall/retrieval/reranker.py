"""Cross-encoder reranking for improved search result quality."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sentence_transformers import CrossEncoder

from ..errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_RERANK_MODEL = "jinaai/jina-reranker-v2-base-multilingual"


@dataclass
class CrossEncoderReranker:
    """Rerank search results using a cross-encoder model.

    Cross-encoders read query + document together for accurate relevance
    scoring, unlike bi-encoders which encode them separately.

    Args:
        model_name: HuggingFace model name
        device: Device to run model on (cpu, cuda, or mps)
        trust_remote_code: Needed by models that ship their own modelling code (Jina)
    """
    model_name: str = DEFAULT_RERANK_MODEL
    device: str = "cpu"
    trust_remote_code: bool = True

    def __post_init__(self) -> None:
        # Defer model loading until first rerank() call unless load() is called
        self._model = None

    def load(self) -> "CrossEncoderReranker":
        if self._model is None:
            import warnings
            warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")
            logger.info(f"Loading reranker: {self.model_name} on {self.device}")
            self._model = CrossEncoder(
                self.model_name,
                device=self.device,
                trust_remote_code=self.trust_remote_code,
            )
        return self

    def rerank(self, query: str, pairs: Sequence[tuple[str, str]]) -> list[tuple[str, str, float]]:
        """Score ``(path, snippet)`` pairs against ``query``.

        Returns ``(path, snippet, score)`` sorted by score, highest first.
        """
        if not pairs:
            return []

        self.load()
        try:
            scores = self._model.predict([(query, snippet) for _, snippet in pairs], convert_to_numpy=True)
        except Exception as e:
            raise EmbeddingError(f"Reranking failed: {e}") from e

        scored = [(path, snippet, float(s)) for (path, snippet), s in zip(pairs, scores)]
        scored.sort(key=lambda x: x[2], reverse=True)
        return scored
