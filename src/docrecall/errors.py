"""Error types surfaced by docrecall commands.

Every message is short and human-readable: ``str(err)`` is what the CLI and
any other shell shows to the user.
"""
from __future__ import annotations


class RecallError(Exception):
    """Base class for all docrecall errors."""


class ModelUnavailableError(RecallError):
    """A model is still loading or failed to load. Retry after it loads."""


class EmbeddingError(RecallError):
    """The embedding or reranking backend failed during a call."""


class StorageError(RecallError):
    """A table could not be opened, created, written or deleted."""


class CollectionError(RecallError):
    """Unknown, duplicate or protected collection."""


class IndexingInProgressError(RecallError):
    """An indexing run for the collection is already outstanding."""
