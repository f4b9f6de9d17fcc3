from .base import Embedder
from .handle import LockedEmbedder, LockedReranker, ModelHandle
from .sentence_transformers import (
    EMBEDDING_MODELS,
    PASSAGE_PREFIX,
    QUERY_PREFIX,
    SentenceTransformersEmbedder,
    resolve_model_id,
)

__all__ = [
    "Embedder",
    "EMBEDDING_MODELS",
    "LockedEmbedder",
    "LockedReranker",
    "ModelHandle",
    "PASSAGE_PREFIX",
    "QUERY_PREFIX",
    "SentenceTransformersEmbedder",
    "resolve_model_id",
]
