"""Tests for the per-collection SQLite store."""

import sqlite3
from pathlib import Path

import numpy as np
import pytest

from docrecall.errors import StorageError
from docrecall.models import Record
from docrecall.store import CollectionStore, table_name


def _unit(dims: int, hot: int) -> np.ndarray:
    v = np.zeros(dims, dtype=np.float32)
    v[hot] = 1.0
    return v


def _records(path: str, n: int, dims: int = 8, mtime: int = 100, hot: int = 0) -> list[Record]:
    return [Record(path=path, content=f"{path} chunk {i}", vector=_unit(dims, hot), mtime=mtime) for i in range(n)]


class TestOpenOrCreate:
    """Table lifecycle and schema management."""

    def test_creates_fresh_table(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        assert table.name == table_name("Default")
        assert table.dims == 8
        assert store.existing_mtimes(table) == {}

    def test_reopen_keeps_rows(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a.txt", 2))
        again = store.open_or_create("Default", 8)
        assert store.existing_mtimes(again) == {"/a.txt": 100}

    def test_dimension_change_rebuilds_empty(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a.txt", 2))
        store.build_text_index(table)

        rebuilt = store.open_or_create("Default", 16)
        assert rebuilt.dims == 16
        assert store.existing_mtimes(rebuilt) == {}
        assert store.lexical_search(rebuilt, "chunk", 5) == []

    def test_table_without_bookkeeping_is_rebuilt(self, tmp_path: Path):
        db = tmp_path / "docrecall.sqlite"
        store = CollectionStore(db)
        conn = sqlite3.connect(db)
        conn.execute(f'CREATE TABLE "{table_name("Legacy")}" (path TEXT, content TEXT)')
        conn.commit()
        conn.close()

        assert store.open_table("Legacy") is None
        table = store.open_or_create("Legacy", 4)
        store.append_batch(table, _records("/x", 1, dims=4))
        assert store.existing_mtimes(table) == {"/x": 100}
        store.close()

    def test_open_table_missing(self, store: CollectionStore):
        assert store.open_table("Nope") is None

    def test_collections_are_isolated(self, store: CollectionStore):
        a = store.open_or_create("A", 8)
        b = store.open_or_create("B", 8)
        store.append_batch(a, _records("/a.txt", 1))
        assert store.existing_mtimes(b) == {}
        assert sorted(store.list_tables()) == ["A", "B"]


class TestRows:
    """Appends and deletions."""

    def test_append_rejects_wrong_width(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        bad = [Record(path="/a", content="x", vector=np.ones(4, dtype=np.float32), mtime=1)]
        with pytest.raises(StorageError):
            store.append_batch(table, bad)
        assert store.existing_mtimes(table) == {}

    def test_append_is_all_or_nothing(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        batch = _records("/ok", 2) + [Record(path="/bad", content="x", vector=np.ones(3, dtype=np.float32), mtime=1)]
        with pytest.raises(StorageError):
            store.append_batch(table, batch)
        assert store.table_stats(table)["rows"] == 0

    def test_delete_rows_for_path(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a.txt", 3) + _records("/b.txt", 2))
        assert store.delete_rows_for_path(table, "/a.txt") == 3
        assert store.existing_mtimes(table) == {"/b.txt": 100}

    def test_delete_path_with_quotes(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        tricky = "/docs/it's a \"quoted\" file.txt"
        store.append_batch(table, _records(tricky, 2) + _records("/other.txt", 1))
        assert store.delete_rows_for_path(table, tricky) == 2
        assert store.existing_mtimes(table) == {"/other.txt": 100}

    def test_table_stats(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 3) + _records("/b", 1))
        stats = store.table_stats(table)
        assert stats["rows"] == 4
        assert stats["files"] == 2

    def test_drop_table(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 1))
        assert store.drop_table("Default") is True
        assert store.open_table("Default") is None
        assert store.drop_table("Default") is False


class TestVectorSearch:
    """Brute-force and ANN-backed nearest neighbour search."""

    def test_brute_force_orders_by_distance(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/near", 1, hot=0) + _records("/far", 1, hot=3))
        q = _unit(8, 0)
        hits = store.vector_search(table, q, 5)
        assert [h[0] for h in hits] == ["/near", "/far"]
        assert hits[0][2] == pytest.approx(0.0, abs=1e-6)
        assert hits[1][2] == pytest.approx(1.0, abs=1e-6)

    def test_limit(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 10))
        assert len(store.vector_search(table, _unit(8, 0), 4)) == 4

    def test_ann_index_covers_old_and_new_rows(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/old", 2, hot=1))
        assert store.build_vector_index(table) == 2
        assert (store.ann_dir / table.name / "faiss.index").exists()

        store.append_batch(table, _records("/new", 1, hot=0))
        hits = store.vector_search(table, _unit(8, 0), 3)
        assert hits[0][0] == "/new"
        assert {h[0] for h in hits} == {"/old", "/new"}

    def test_ann_skips_deleted_rows(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/gone", 2, hot=0) + _records("/kept", 1, hot=1))
        store.build_vector_index(table)
        store.delete_rows_for_path(table, "/gone")

        hits = store.vector_search(table, _unit(8, 0), 3)
        assert [h[0] for h in hits] == ["/kept"]

    def test_ann_index_reloaded_from_disk(self, tmp_path: Path):
        db = tmp_path / "docrecall.sqlite"
        first = CollectionStore(db, faiss_index_type="Flat")
        table = first.open_or_create("Default", 8)
        first.append_batch(table, _records("/a", 1, hot=2) + _records("/b", 1, hot=5))
        first.build_vector_index(table)
        first.close()

        second = CollectionStore(db, faiss_index_type="Flat")
        reopened = second.open_table("Default")
        hits = second.vector_search(reopened, _unit(8, 5), 1)
        assert hits[0][0] == "/b"
        second.close()

    def test_ivf_with_few_vectors_falls_back(self, tmp_path: Path):
        store = CollectionStore(tmp_path / "docrecall.sqlite", faiss_index_type="IVF", faiss_nlist=100)
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 3, hot=4))
        assert store.build_vector_index(table) == 3
        assert store.vector_search(table, _unit(8, 4), 1)[0][0] == "/a"
        store.close()

    def test_rebuild_removes_stale_ann(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 1))
        store.build_vector_index(table)
        store.open_or_create("Default", 4)
        assert not (store.ann_dir / table.name).exists()


class TestLexicalSearch:
    """FTS5 full-text search."""

    def test_empty_before_text_index(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 1))
        assert store.lexical_search(table, "chunk", 5) == []

    def test_matches_any_term(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, [
            Record(path="/fox", content="the quick brown fox", vector=_unit(8, 0), mtime=1),
            Record(path="/bread", content="sourdough bread recipe", vector=_unit(8, 1), mtime=1),
        ])
        store.build_text_index(table)
        assert store.lexical_search(table, "fox", 5) == [("/fox", "the quick brown fox")]
        paths = {p for p, _ in store.lexical_search(table, "fox bread", 5)}
        assert paths == {"/fox", "/bread"}

    def test_query_syntax_is_literal(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, [Record(path="/a", content="say \"hello\" AND NOT bye", vector=_unit(8, 0), mtime=1)])
        store.build_text_index(table)
        assert store.lexical_search(table, 'hello" OR (', 5)[0][0] == "/a"
        assert store.lexical_search(table, "   ", 5) == []

    def test_deleted_rows_drop_out(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, [Record(path="/a", content="unique marmalade", vector=_unit(8, 0), mtime=1)])
        store.build_text_index(table)
        store.delete_rows_for_path(table, "/a")
        assert store.lexical_search(table, "marmalade", 5) == []


class TestCaseAndErrors:
    """Collections differing only in case, and SQLite failures."""

    def test_case_variants_get_separate_tables(self, store: CollectionStore):
        upper = store.open_or_create("Docs", 8)
        store.append_batch(upper, _records("/upper.txt", 1))
        lower = store.open_or_create("docs", 8)
        store.append_batch(lower, _records("/lower.txt", 2))

        assert upper.name != lower.name
        assert store.existing_mtimes(upper) == {"/upper.txt": 100}
        assert store.existing_mtimes(lower) == {"/lower.txt": 100}
        assert sorted(store.list_tables()) == ["Docs", "docs"]

    def test_control_characters_in_query(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, [Record(path="/fox", content="the quick brown fox", vector=_unit(8, 0), mtime=1)])
        store.build_text_index(table)
        assert store.lexical_search(table, "fox\x00brown", 5) == [("/fox", "the quick brown fox")]
        assert store.lexical_search(table, "\x00\x01", 5) == []

    def test_sqlite_errors_become_storage_errors(self, store: CollectionStore):
        table = store.open_or_create("Default", 8)
        store.append_batch(table, _records("/a", 1))
        store.build_text_index(table)
        # Remove the row table behind the handle's back
        store._get_conn().execute(f'DROP TABLE "{table.name}"')

        with pytest.raises(StorageError):
            store.existing_mtimes(table)
        with pytest.raises(StorageError):
            store.table_stats(table)
        with pytest.raises(StorageError):
            store.vector_search(table, _unit(8, 0), 3)
        with pytest.raises(StorageError):
            store.lexical_search(table, "chunk", 3)
