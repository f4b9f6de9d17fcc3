from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..chunking import ByteChunker
from ..embeddings.base import Embedder
from ..errors import EmbeddingError
from ..extractors import ExtractorRegistry, default_registry
from ..models import Record
from ..store import CollectionStore, CollectionTable
from .scan_types import (
    STATUS_NO_NEW_FILES,
    STATUS_TEXT_INDEX,
    STATUS_VECTOR_INDEX,
    PendingChunk,
    ProgressCallback,
    ScanStats,
    embedding_batch_status,
)

logger = logging.getLogger(__name__)


def _file_mtime(path: Path) -> int:
    return int(path.stat().st_mtime)


def _noop_progress(current: int, total: int, message: str) -> None:
    pass


@dataclass
class Indexer:
    """Incremental file -> chunk -> vector pipeline for one directory tree.

    A file is re-read only when it is new or its modification time changed.
    Chunks from many files share embedding batches; each batch is written as
    soon as it is embedded, so an aborted run keeps everything flushed before
    the failure.
    """

    store: CollectionStore
    embedder: Embedder
    chunker: ByteChunker = field(default_factory=ByteChunker)
    extractors: ExtractorRegistry = field(default_factory=default_registry)
    embed_batch_size: int = 64
    ann_threshold: int = 256

    def __post_init__(self) -> None:
        if self.embed_batch_size <= 0:
            raise ValueError(f"embed_batch_size must be positive, got {self.embed_batch_size}")
        self.last_stats = ScanStats()

    def index_directory(
        self,
        root: str | Path,
        collection: str,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Index every file under ``root`` into ``collection``.

        Returns the number of distinct files that got at least one chunk
        written during this run.
        """
        start = time.time()
        report = progress or _noop_progress
        root_path = Path(root).expanduser().resolve()
        if not root_path.is_dir():
            raise ValueError(f"Not a directory: {root_path}")

        stats = ScanStats()
        self.last_stats = stats

        dim = self.embedder.probe_dimension()
        table = self.store.open_or_create(collection, dim)
        existing = self.store.existing_mtimes(table)

        files = sorted(p for p in root_path.rglob("*") if p.is_file())
        total = len(files)
        stats.files_scanned = total
        logger.info(f"Found {total} files under {root_path} for collection '{collection}'")

        pending: list[PendingChunk] = []
        indexed: set[str] = set()

        for current, path in enumerate(files, start=1):
            path_str = str(path)
            try:
                mtime = _file_mtime(path)
            except OSError as e:
                logger.debug(f"Cannot stat {path}: {e}")
                stats.files_empty += 1
                report(current, total, path_str)
                continue

            if existing.get(path_str) == mtime:
                stats.files_skipped += 1
                report(current, total, path_str)
                continue

            text = self.extractors.read_text(path)
            if text is None or not text.strip():
                stats.files_empty += 1
                report(current, total, path_str)
                continue

            self.store.delete_rows_for_path(table, path_str)
            for chunk in self.chunker.chunk(text):
                pending.append(PendingChunk(path=path_str, content=chunk, mtime=mtime))
            stats.files_read += 1
            report(current, total, path_str)

            while len(pending) >= self.embed_batch_size:
                batch = pending[:self.embed_batch_size]
                del pending[:self.embed_batch_size]
                stats.batches_written += 1
                report(current, total, embedding_batch_status(stats.batches_written))
                self._flush(table, batch, indexed, stats)

        if pending:
            stats.batches_written += 1
            report(total, total, embedding_batch_status(stats.batches_written))
            self._flush(table, pending, indexed, stats)
            pending = []

        stats.files_indexed = len(indexed)

        if not indexed:
            report(total, total, STATUS_NO_NEW_FILES)
            stats.elapsed_seconds = time.time() - start
            logger.info(f"Collection '{collection}': no new files ({stats.files_skipped} unchanged)")
            return 0

        if stats.files_read >= self.ann_threshold:
            report(total, total, STATUS_VECTOR_INDEX)
            try:
                self.store.build_vector_index(table)
                stats.vector_index_built = True
            except Exception as e:
                logger.warning(f"Vector index build failed for '{collection}', searches fall back to brute force: {e}")

        report(total, total, STATUS_TEXT_INDEX)
        try:
            self.store.build_text_index(table)
            stats.text_index_built = True
        except Exception as e:
            logger.warning(f"Text index build failed for '{collection}': {e}")

        stats.elapsed_seconds = time.time() - start
        logger.info(
            f"Collection '{collection}': {stats.files_indexed} files, {stats.chunks_written} chunks "
            f"in {stats.batches_written} batches ({stats.files_skipped} unchanged, {stats.elapsed_seconds:.1f}s)"
        )
        return stats.files_indexed

    def _flush(
        self,
        table: CollectionTable,
        batch: list[PendingChunk],
        indexed: set[str],
        stats: ScanStats,
    ) -> None:
        """Embed one batch and append it. Failures propagate and abort the run."""
        vectors = self.embedder.embed_passages([c.content for c in batch])
        if len(vectors) != len(batch):
            raise EmbeddingError(f"Embedder returned {len(vectors)} vectors for {len(batch)} chunks")

        records = [
            Record(path=c.path, content=c.content, vector=v, mtime=c.mtime)
            for c, v in zip(batch, vectors)
        ]
        self.store.append_batch(table, records)
        indexed.update(c.path for c in batch)
        stats.chunks_written += len(records)
