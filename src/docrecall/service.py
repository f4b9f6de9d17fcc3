"""Command surface: the operations a shell (CLI, GUI) drives.

Model loading, indexing and searches run on a small thread pool; results
and progress travel back through an :class:`EventChannel`.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from pathlib import Path
from typing import Any, Callable, Optional

from .chunking import ByteChunker
from .config import CollectionRegistry, RecallConfig
from .embeddings.base import Embedder
from .embeddings.handle import LockedEmbedder, LockedReranker, ModelHandle
from .errors import CollectionError, IndexingInProgressError
from .events import (
    EventChannel,
    IndexingComplete,
    IndexingError,
    IndexingProgress,
    ModelLoadError,
    ModelLoaded,
    RerankerLoadError,
    RerankerLoaded,
    SearchFailed,
    SearchResults,
)
from .extractors import default_registry
from .indexer import Indexer, ProgressCallback, ScanStats
from .retrieval.normalize import DisplayMatch, display_matches
from .retrieval.retriever import Reranker, Retriever
from .store import CollectionStore

logger = logging.getLogger(__name__)


class RecallService:
    def __init__(
        self,
        cfg: RecallConfig,
        registry: Optional[CollectionRegistry] = None,
        events: Optional[EventChannel] = None,
        embedder_factory: Optional[Callable[[], Embedder]] = None,
        reranker_factory: Optional[Callable[[], Reranker]] = None,
        store: Optional[CollectionStore] = None,
    ) -> None:
        self.cfg = cfg
        self.registry = registry or cfg.registry()
        self.events = events or EventChannel()
        self.store = store or CollectionStore(
            cfg.db_path,
            faiss_index_type=cfg.faiss_index_type,
            faiss_nlist=cfg.faiss_nlist,
            faiss_nprobe=cfg.faiss_nprobe,
        )

        self._embedder_factory = embedder_factory or self._default_embedder
        if reranker_factory is None and cfg.use_rerank:
            reranker_factory = self._default_reranker
        self._reranker_factory = reranker_factory

        self.embedding_handle = ModelHandle(f"Embedding model {cfg.embedding_model}")
        self.embedder = LockedEmbedder(self.embedding_handle)
        self.reranker_handle: Optional[ModelHandle] = None
        if self._reranker_factory is not None:
            self.reranker_handle = ModelHandle(f"Reranker {cfg.rerank_model}")

        self.chunker = ByteChunker(cfg.chunk_max_bytes, cfg.chunk_overlap_bytes)
        self.extractors = default_registry()
        self._retriever = Retriever(self.store, self.embedder)
        self._reranking_retriever: Optional[Retriever] = None
        if self.reranker_handle is not None:
            self._reranking_retriever = Retriever(self.store, self.embedder, reranker=LockedReranker(self.reranker_handle))

        self._executor = ThreadPoolExecutor(max_workers=cfg.workers, thread_name_prefix="docrecall")
        self._running: set[str] = set()
        self._running_lock = threading.Lock()
        self._load_futures: list[Future] = []
        self.last_stats: Optional[ScanStats] = None

    # ---- model loading ----

    def _default_embedder(self) -> Embedder:
        from .embeddings.sentence_transformers import SentenceTransformersEmbedder

        return SentenceTransformersEmbedder(
            model_id=self.cfg.embedding_model,
            device=self.cfg.embedding_device,
            batch_size=self.cfg.embedding_batch_size,
        )

    def _default_reranker(self) -> Reranker:
        from .retrieval.reranker import CrossEncoderReranker

        return CrossEncoderReranker(
            model_name=self.cfg.rerank_model,
            device=self.cfg.rerank_device,
            trust_remote_code=self.cfg.rerank_trust_remote_code,
        ).load()

    def _load_embedder(self) -> None:
        try:
            self.embedding_handle.load(self._embedder_factory)
        except Exception as e:
            self.events.send(ModelLoadError(str(e)))
            return
        self.events.send(ModelLoaded(self.cfg.embedding_model))

    def _load_reranker(self) -> None:
        assert self.reranker_handle is not None and self._reranker_factory is not None
        try:
            self.reranker_handle.load(self._reranker_factory)
        except Exception as e:
            self.events.send(RerankerLoadError(str(e)))
            return
        self.events.send(RerankerLoaded(self.cfg.rerank_model))

    def start(self, wait: bool = False) -> "RecallService":
        """Begin loading models in the background. ``wait=True`` blocks until they settle."""
        if not self._load_futures:
            self._load_futures.append(self._executor.submit(self._load_embedder))
            if self.reranker_handle is not None:
                self._load_futures.append(self._executor.submit(self._load_reranker))
        if wait:
            wait_futures(self._load_futures)
        return self

    # ---- search ----

    def search(self, query: str, limit: Optional[int] = None, collection: Optional[str] = None) -> list[DisplayMatch]:
        """Search a collection (the active one by default) and apply the display threshold."""
        self.embedding_handle.ensure_ready()
        name = collection or self.registry.active
        if name not in self.registry:
            raise CollectionError(f"Unknown collection '{name}'")

        retriever = self._retriever
        if self.reranker_handle is not None and self.reranker_handle.is_ready:
            retriever = self._reranking_retriever or retriever
        matches = retriever.search(name, query, limit or self.cfg.search_limit)
        return display_matches(matches, self.cfg.score_threshold)

    def submit_search(self, query: str, limit: Optional[int] = None) -> "Future[list[DisplayMatch]]":
        return self._executor.submit(self.search, query, limit)

    # ---- indexing ----

    def _reserve(self, name: str) -> None:
        if name not in self.registry:
            raise CollectionError(f"Unknown collection '{name}'")
        with self._running_lock:
            if name in self._running:
                raise IndexingInProgressError(f"Collection '{name}' is already being indexed")
            self._running.add(name)

    def _release(self, name: str) -> None:
        with self._running_lock:
            self._running.discard(name)

    def is_indexing(self, name: str) -> bool:
        with self._running_lock:
            return name in self._running

    def _run_index(self, root: str | Path, name: str, progress: Optional[ProgressCallback]) -> int:
        def report(current: int, total: int, message: str) -> None:
            self.events.send(IndexingProgress(name, current, total, message))
            if progress is not None:
                progress(current, total, message)

        indexer = Indexer(
            store=self.store,
            embedder=self.embedder,
            chunker=self.chunker,
            extractors=self.extractors,
            embed_batch_size=self.cfg.embed_batch_size,
            ann_threshold=self.cfg.ann_threshold,
        )
        try:
            count = indexer.index_directory(root, name, report)
        except Exception as e:
            logger.error(f"Indexing '{name}' failed: {e}")
            self.events.send(IndexingError(name, str(e)))
            raise
        finally:
            self.last_stats = indexer.last_stats
            self._release(name)

        self.registry.record_path(name, str(Path(root).expanduser().resolve()))
        self.events.send(IndexingComplete(name, count, f"Indexed {count} files"))
        return count

    def index_directory(
        self,
        root: str | Path,
        collection: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Index ``root`` into a collection (the active one by default) on the calling thread."""
        self.embedding_handle.ensure_ready()
        name = collection or self.registry.active
        self._reserve(name)
        return self._run_index(root, name, progress)

    def submit_index(
        self,
        root: str | Path,
        collection: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> "Future[int]":
        """Queue an indexing run. A second run for the same collection is refused right away."""
        self.embedding_handle.ensure_ready()
        name = collection or self.registry.active
        self._reserve(name)
        try:
            return self._executor.submit(self._run_index, root, name, progress)
        except RuntimeError:
            self._release(name)
            raise

    # ---- collections ----

    def reset_collection(self, name: Optional[str] = None) -> None:
        """Drop a collection's indexed data; the collection itself stays registered."""
        name = name or self.registry.active
        if name not in self.registry:
            raise CollectionError(f"Unknown collection '{name}'")
        if self.is_indexing(name):
            raise IndexingInProgressError(f"Collection '{name}' is being indexed")
        self.store.drop_table(name)

    def switch_active_collection(self, name: str) -> None:
        self.registry.set_active(name)
        logger.info(f"Active collection: {name}")

    def create_collection(self, name: str, description: str = "") -> None:
        self.registry.add(name, description)
        logger.info(f"Created collection '{name.strip()}'")

    def delete_collection(self, name: str) -> None:
        if self.is_indexing(name):
            raise IndexingInProgressError(f"Collection '{name}' is being indexed")
        self.registry.remove(name)
        self.store.drop_table(name)
        logger.info(f"Deleted collection '{name}'")

    def list_collections(self) -> list[dict[str, Any]]:
        out = []
        for name in self.registry.names():
            info = self.registry.get(name)
            assert info is not None
            entry: dict[str, Any] = {
                "name": name,
                "description": info.description,
                "paths": list(info.indexed_paths),
                "active": name == self.registry.active,
                "rows": 0,
                "files": 0,
            }
            table = self.store.open_table(name)
            if table is not None:
                stats = self.store.table_stats(table)
                entry["rows"] = stats["rows"]
                entry["files"] = stats["files"]
            out.append(entry)
        return out

    def status(self) -> dict[str, Any]:
        # Tables left behind by collections this registry does not declare
        unregistered = [n for n in self.store.list_tables() if n not in self.registry]
        return {
            "index_dir": str(self.cfg.index_dir),
            "embedding_model": self.cfg.embedding_model,
            "embedding_state": self.embedding_handle.state,
            "reranker_state": self.reranker_handle.state if self.reranker_handle else "disabled",
            "active_collection": self.registry.active,
            "collections": self.list_collections(),
            "unregistered_collections": unregistered,
        }

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
        self.store.close()


class SearchScheduler:
    """Debounced, latest-wins search for type-ahead input.

    Each keystroke restarts a timer; when the timer fires the query gets a new
    generation number and is submitted. Results whose generation is no longer
    current are dropped instead of delivered, so a slow early search can
    never overwrite a newer one.
    """

    def __init__(
        self,
        service: RecallService,
        debounce_ms: Optional[int] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self._service = service
        if debounce_ms is None:
            debounce_ms = service.cfg.search_debounce_ms
        self.debounce_seconds = debounce_ms / 1000.0
        self.events = events or service.events
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self.generation = 0

    def update_query(self, text: str) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self._fire, args=(text,))
            self._timer.daemon = True
            self._timer.start()

    def _fire(self, text: str) -> None:
        with self._lock:
            self.generation += 1
            generation = self.generation
            self._timer = None
        future = self._service.submit_search(text)
        future.add_done_callback(lambda f: self._deliver(generation, text, f))

    def _deliver(self, generation: int, text: str, future: Future) -> None:
        with self._lock:
            current = self.generation
        if generation != current or future.cancelled():
            logger.debug(f"Discarding stale search results (generation {generation}, current {current})")
            return
        exc = future.exception()
        if exc is not None:
            self.events.send(SearchFailed(generation, text, str(exc)))
            return
        self.events.send(SearchResults(generation, text, tuple(future.result())))

    def cancel(self) -> None:
        """Stop the pending timer and orphan any search still running."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.generation += 1
