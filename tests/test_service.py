"""Tests for the command surface, events and the debounced search scheduler."""

import queue
import threading
from concurrent.futures import Future

import pytest

from docrecall.config import CollectionInfo, CollectionRegistry
from docrecall.errors import CollectionError, IndexingInProgressError, ModelUnavailableError
from docrecall.events import (
    EventChannel,
    IndexingComplete,
    IndexingProgress,
    ModelLoadError,
    ModelLoaded,
    RerankerLoaded,
    RerankerLoadError,
    SearchFailed,
    SearchResults,
)
from docrecall.service import RecallService, SearchScheduler

from conftest import FakeEmbedder


@pytest.fixture
def service(cfg):
    svc = RecallService(cfg, embedder_factory=FakeEmbedder)
    yield svc
    svc.close()


class TestModelLoading:
    """Startup and unavailable-model behaviour."""

    def test_commands_fail_before_load(self, service, docs):
        with pytest.raises(ModelUnavailableError, match="still loading"):
            service.search("fox")
        with pytest.raises(ModelUnavailableError):
            service.index_directory(docs)

    def test_model_loaded_event(self, service):
        service.start(wait=True)
        assert service.embedding_handle.is_ready
        assert any(isinstance(e, ModelLoaded) for e in service.events.drain())

    def test_model_load_error(self, cfg):
        def boom():
            raise OSError("weights missing")

        svc = RecallService(cfg, embedder_factory=boom)
        try:
            svc.start(wait=True)
            events = svc.events.drain()
            assert ModelLoadError("weights missing") in events
            with pytest.raises(ModelUnavailableError, match="weights missing"):
                svc.search("anything")
        finally:
            svc.close()

    def test_reranker_events(self, cfg):
        ok = RecallService(cfg, embedder_factory=FakeEmbedder, reranker_factory=lambda: object())
        bad = RecallService(cfg, embedder_factory=FakeEmbedder, reranker_factory=lambda: 1 / 0)
        try:
            ok.start(wait=True)
            bad.start(wait=True)
            assert any(isinstance(e, RerankerLoaded) for e in ok.events.drain())
            assert any(isinstance(e, RerankerLoadError) for e in bad.events.drain())
        finally:
            ok.close()
            bad.close()


class TestIndexAndSearch:
    """Index a directory, then search it through the service."""

    def test_index_then_search(self, service, docs):
        service.start(wait=True)
        assert service.index_directory(docs) == 3
        hits = service.search("quick brown fox")
        assert hits[0].path == str(docs / "fox.md")
        assert hits[0].percent is not None

    def test_index_emits_events_and_records_path(self, service, docs):
        service.start(wait=True)
        service.events.drain()
        service.index_directory(docs)

        events = service.events.drain()
        assert any(isinstance(e, IndexingProgress) for e in events)
        assert events[-1] == IndexingComplete("Default", 3, "Indexed 3 files")
        assert service.registry.get("Default").indexed_paths == [str(docs)]

    def test_threshold_applied(self, cfg, docs):
        strict = RecallService(
            type(cfg)(index_dir=cfg.index_dir, faiss_index_type="Flat", score_threshold=99.0),
            embedder_factory=FakeEmbedder,
        )
        try:
            strict.start(wait=True)
            strict.index_directory(docs)
            hits = strict.search("completely unrelated words")
            assert all(h.percent is None or h.percent >= 99.0 for h in hits)
        finally:
            strict.close()

    def test_second_run_refused_while_outstanding(self, service, docs):
        service.start(wait=True)
        started = threading.Event()
        release = threading.Event()

        def slow_progress(current, total, message):
            started.set()
            release.wait(5)

        future = service.submit_index(docs, progress=slow_progress)
        assert started.wait(5)
        with pytest.raises(IndexingInProgressError):
            service.submit_index(docs)
        with pytest.raises(IndexingInProgressError):
            service.reset_collection("Default")
        release.set()
        assert future.result(timeout=10) == 3
        assert service.submit_index(docs).result(timeout=10) == 0

    def test_submit_search(self, service, docs):
        service.start(wait=True)
        service.index_directory(docs)
        hits = service.submit_search("sourdough bread").result(timeout=10)
        assert hits[0].path == str(docs / "kitchen.txt")


class TestCollections:
    """Registry-backed collection commands."""

    def test_default_always_present(self, service):
        names = [c["name"] for c in service.list_collections()]
        assert names[0] == "Default"

    def test_create_switch_and_isolate(self, service, docs):
        service.start(wait=True)
        service.create_collection("Work", "work notes")
        service.switch_active_collection("Work")
        service.index_directory(docs)

        listing = {c["name"]: c for c in service.list_collections()}
        assert listing["Work"]["active"] is True
        assert listing["Work"]["files"] == 3
        assert listing["Default"]["files"] == 0
        assert service.search("fox", collection="Default") == []

    def test_duplicate_and_unknown(self, service):
        service.create_collection("A")
        with pytest.raises(CollectionError):
            service.create_collection("A")
        with pytest.raises(CollectionError):
            service.switch_active_collection("Missing")

    def test_default_cannot_be_deleted(self, service):
        with pytest.raises(CollectionError):
            service.delete_collection("Default")

    def test_delete_active_falls_back_to_default(self, service, docs):
        service.start(wait=True)
        service.create_collection("Tmp")
        service.switch_active_collection("Tmp")
        service.index_directory(docs)
        service.delete_collection("Tmp")

        assert service.registry.active == "Default"
        assert "Tmp" not in service.registry
        assert service.store.open_table("Tmp") is None

    def test_reset_keeps_registry_entry(self, service, docs):
        service.start(wait=True)
        service.index_directory(docs)
        service.reset_collection()
        assert service.store.open_table("Default") is None
        assert "Default" in service.registry
        assert service.index_directory(docs) == 3

    def test_status_lists_tables_missing_from_registry(self, service):
        service.store.open_or_create("Old Notes", 8)
        service.store.open_or_create("Default", 8)
        info = service.status()
        assert info["unregistered_collections"] == ["Old Notes"]
        assert [c["name"] for c in info["collections"]] == ["Default"]

    def test_registry_from_config(self, cfg):
        registry = CollectionRegistry({"Papers": CollectionInfo("pdfs", ["/p"])}, active="Papers")
        svc = RecallService(cfg, registry=registry, embedder_factory=FakeEmbedder)
        try:
            assert svc.registry.active == "Papers"
            assert [c["name"] for c in svc.list_collections()] == ["Default", "Papers"]
        finally:
            svc.close()


class _FakeSearchService:
    """Stands in for RecallService: hands out futures the test completes."""

    def __init__(self):
        self.events = EventChannel()
        self.submitted: "queue.Queue[tuple[str, Future]]" = queue.Queue()

    def submit_search(self, query, limit=None):
        f: Future = Future()
        self.submitted.put((query, f))
        return f


class TestSearchScheduler:
    """Debounce and latest-generation-wins delivery."""

    def test_debounce_collapses_keystrokes(self):
        fake = _FakeSearchService()
        sched = SearchScheduler(fake, debounce_ms=200)
        for text in ["f", "fo", "fox"]:
            sched.update_query(text)
        query, future = fake.submitted.get(timeout=5)
        assert query == "fox"
        assert fake.submitted.empty()
        future.set_result([])
        assert fake.events.get(timeout=1) == SearchResults(1, "fox", ())

    def test_stale_results_discarded(self):
        fake = _FakeSearchService()
        sched = SearchScheduler(fake, debounce_ms=0)

        sched.update_query("old")
        _, old = fake.submitted.get(timeout=5)
        sched.update_query("new")
        _, new = fake.submitted.get(timeout=5)

        new.set_result(["fresh"])
        old.set_result(["stale"])

        events = fake.events.drain()
        assert events == [SearchResults(2, "new", ("fresh",))]

    def test_failure_delivered(self):
        fake = _FakeSearchService()
        sched = SearchScheduler(fake, debounce_ms=0)
        sched.update_query("q")
        _, f = fake.submitted.get(timeout=5)
        f.set_exception(ModelUnavailableError("Embedding model is still loading"))
        assert fake.events.get(timeout=1) == SearchFailed(1, "q", "Embedding model is still loading")

    def test_cancel_orphans_inflight(self):
        fake = _FakeSearchService()
        sched = SearchScheduler(fake, debounce_ms=0)
        sched.update_query("q")
        _, f = fake.submitted.get(timeout=5)
        sched.cancel()
        f.set_result(["late"])
        assert fake.events.drain() == []
