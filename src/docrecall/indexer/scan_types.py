"""Data classes for the indexing pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

# (files_done, files_total, path or status message)
ProgressCallback = Callable[[int, int, str], None]

STATUS_NO_NEW_FILES = "Done -- no new files"
STATUS_VECTOR_INDEX = "Building vector index..."
STATUS_TEXT_INDEX = "Building search index..."


def embedding_batch_status(n: int) -> str:
    return f"Embedding batch {n}"


@dataclass(frozen=True)
class PendingChunk:
    """Chunk staged for embedding."""

    path: str
    content: str
    mtime: int


@dataclass
class ScanStats:
    """Statistics from one indexing run."""

    files_scanned: int = 0
    files_skipped: int = 0  # unchanged since the last run
    files_read: int = 0  # reprocessed and non-empty
    files_empty: int = 0  # unsupported, unreadable or blank
    files_indexed: int = 0
    chunks_written: int = 0
    batches_written: int = 0
    vector_index_built: bool = False
    text_index_built: bool = False
    elapsed_seconds: float = 0.0
