from __future__ import annotations

import logging
import shutil
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np

from ..errors import StorageError
from ..models import Record
from .faiss_index import FAISSIndex
from .naming import collection_name, table_name
from .schema import FTS_SQL, REGISTRY_SQL, ROWS_SQL, SCHEMA_VERSION, TableSchema, is_compatible

logger = logging.getLogger(__name__)


def _escape_fts5_query(query: str) -> str:
    """Quote one term so FTS5 treats it as literal text, not syntax."""
    escaped = query.replace('"', '""')
    return f'"{escaped}"'


def _match_expression(query: str) -> str:
    """Any-term match: every whitespace-separated term quoted, OR-ed.

    Control characters split terms (FTS5 cannot parse a NUL inside a quoted
    string). Terms without a single word character (lone punctuation)
    tokenize to nothing and are left out.
    """
    cleaned = "".join(ch if ch.isprintable() else " " for ch in query)
    terms = [t for t in cleaned.split() if any(ch.isalnum() for ch in t)]
    return " OR ".join(_escape_fts5_query(t) for t in terms)


def _vec_to_blob(vec: np.ndarray) -> bytes:
    vec = np.asarray(vec, dtype=np.float32).ravel()
    return vec.tobytes()


def _blob_to_vec(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


def _cosine_distances(query_vec: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    q = np.asarray(query_vec, dtype=np.float32).ravel()
    qn = np.linalg.norm(q) + 1e-12
    norms = np.linalg.norm(matrix, axis=1) + 1e-12
    return 1.0 - (matrix @ q) / (norms * qn)


@dataclass(frozen=True)
class CollectionTable:
    """Handle to one collection's row table."""
    collection: str
    name: str
    dims: int


class CollectionStore:
    """SQLite-backed store holding one table per collection.

    Vector search uses brute-force cosine distance until an ANN index has
    been built for a table; afterwards the FAISS index answers for the rows
    it covers and newer rows are scanned directly. The lexical side is an
    FTS5 index rebuilt at the end of each indexing run.
    """

    def __init__(
        self,
        db_path: Path,
        faiss_index_type: str = "IVF",
        faiss_nlist: int = 100,
        faiss_nprobe: int = 10,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ann_dir = self.db_path.parent / "ann"

        # Thread-local storage for per-thread connections
        self._local = threading.local()
        # Track all connections for cleanup
        self._connections: list[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()

        self.faiss_index_type = faiss_index_type
        self.faiss_nlist = faiss_nlist
        self.faiss_nprobe = faiss_nprobe
        self._ann: dict[str, FAISSIndex] = {}
        self._ann_lock = threading.Lock()
        # Serialises create/drop so two threads never rebuild the same table
        self._ddl_lock = threading.Lock()

        try:
            self._get_conn().executescript(REGISTRY_SQL)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open index database {self.db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        """Get a thread-local SQLite connection.

        Each thread gets its own connection with WAL mode and busy timeout.
        Connections are tracked for cleanup via close().
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        """Close all thread-local connections."""
        with self._conn_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()

    # ---- tables ----

    def _table_exists(self, name: str) -> bool:
        row = self._get_conn().execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (name,)
        ).fetchone()
        return row is not None

    def _read_schema(self, name: str) -> Optional[TableSchema]:
        conn = self._get_conn()
        if not self._table_exists(name):
            return None
        columns = frozenset(r["name"] for r in conn.execute(f'PRAGMA table_info("{name}")'))
        row = conn.execute(
            "SELECT dims, schema_version FROM collection_tables WHERE table_name=?", (name,)
        ).fetchone()
        if row is None:
            # Table without bookkeeping (interrupted create): never compatible
            return TableSchema(columns=columns, dims=0, version=0)
        return TableSchema(columns=columns, dims=int(row["dims"]), version=int(row["schema_version"]))

    def _drop(self, name: str) -> None:
        conn = self._get_conn()
        conn.executescript(
            f'DROP TABLE IF EXISTS "{name}__fts";\n'
            f'DROP TABLE IF EXISTS "{name}";\n'
        )
        with conn:
            conn.execute("DELETE FROM collection_tables WHERE table_name=?", (name,))
        with self._ann_lock:
            self._ann.pop(name, None)
        shutil.rmtree(self.ann_dir / name, ignore_errors=True)

    def _create(self, collection: str, name: str, dims: int) -> None:
        conn = self._get_conn()
        conn.executescript(ROWS_SQL.format(table=name))
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO collection_tables(table_name, collection, dims, schema_version) VALUES(?,?,?,?)",
                (name, collection, dims, SCHEMA_VERSION),
            )

    def open_or_create(self, collection: str, expected_dim: int) -> CollectionTable:
        """Open the collection's table, rebuilding it when its layout or width is stale."""
        name = table_name(collection)
        try:
            with self._ddl_lock:
                schema = self._read_schema(name)
                if is_compatible(schema, expected_dim):
                    return CollectionTable(collection=collection, name=name, dims=expected_dim)
                if schema is not None:
                    logger.info(
                        f"Rebuilding table for collection '{collection}' "
                        f"(dims {schema.dims} -> {expected_dim}, schema v{schema.version} -> v{SCHEMA_VERSION})"
                    )
                    self._drop(name)
                else:
                    logger.info(f"Creating table for collection '{collection}' ({expected_dim} dims)")
                self._create(collection, name, expected_dim)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open collection '{collection}': {e}") from e
        return CollectionTable(collection=collection, name=name, dims=expected_dim)

    def open_table(self, collection: str) -> Optional[CollectionTable]:
        """Open an existing table for reading; None if the collection has none."""
        name = table_name(collection)
        try:
            schema = self._read_schema(name)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open collection '{collection}': {e}") from e
        if schema is None or schema.version == 0:
            return None
        return CollectionTable(collection=collection, name=name, dims=schema.dims)

    def drop_table(self, collection: str) -> bool:
        """Drop a collection's rows and indexes. Returns False if there was nothing to drop."""
        name = table_name(collection)
        try:
            with self._ddl_lock:
                existed = self._table_exists(name)
                self._drop(name)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot drop collection '{collection}': {e}") from e
        if existed:
            logger.info(f"Dropped table for collection '{collection}'")
        return existed

    def list_tables(self) -> list[str]:
        """Collection names that currently have a table."""
        try:
            rows = self._get_conn().execute(
                "SELECT table_name FROM collection_tables ORDER BY table_name"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot list collections: {e}") from e
        names = []
        for r in rows:
            decoded = collection_name(r["table_name"])
            if decoded is not None:
                names.append(decoded)
        return names

    def table_stats(self, table: CollectionTable) -> dict[str, Any]:
        try:
            row = self._get_conn().execute(
                f'SELECT COUNT(*) AS n, COUNT(DISTINCT path) AS files FROM "{table.name}"'
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read stats of '{table.collection}': {e}") from e
        return {
            "collection": table.collection,
            "table": table.name,
            "dims": table.dims,
            "rows": int(row["n"]),
            "files": int(row["files"]),
            "ann_index": (self.ann_dir / table.name / "faiss.index").exists(),
        }

    # ---- rows ----

    def existing_mtimes(self, table: CollectionTable) -> dict[str, int]:
        try:
            rows = self._get_conn().execute(
                f'SELECT path, MAX(mtime) AS mtime FROM "{table.name}" GROUP BY path'
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read '{table.collection}': {e}") from e
        return {r["path"]: int(r["mtime"]) for r in rows}

    def delete_rows_for_path(self, table: CollectionTable, path: str) -> int:
        conn = self._get_conn()
        try:
            with conn:
                cur = conn.execute(f'DELETE FROM "{table.name}" WHERE path=?', (path,))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot delete rows for {path}: {e}") from e
        return cur.rowcount

    def append_batch(self, table: CollectionTable, records: Sequence[Record]) -> None:
        """Append all records in one transaction; nothing is written on failure."""
        rows = []
        for rec in records:
            vec = np.asarray(rec.vector, dtype=np.float32).ravel()
            if vec.shape[0] != table.dims:
                raise StorageError(
                    f"Vector width {vec.shape[0]} does not match table width {table.dims} ({rec.path})"
                )
            rows.append((rec.path, rec.content, _vec_to_blob(vec), int(rec.mtime)))
        if not rows:
            return
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany(
                    f'INSERT INTO "{table.name}"(path, content, vector, mtime) VALUES(?,?,?,?)',
                    rows,
                )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot append {len(rows)} rows to '{table.collection}': {e}") from e

    # ---- indexes ----

    def build_vector_index(self, table: CollectionTable) -> int:
        """Build and persist an ANN index over every current row. Returns vectors indexed."""
        rows = self._get_conn().execute(f'SELECT id, vector FROM "{table.name}" ORDER BY id').fetchall()
        path = self.ann_dir / table.name
        if not rows:
            with self._ann_lock:
                self._ann.pop(table.name, None)
            shutil.rmtree(path, ignore_errors=True)
            return 0

        index = FAISSIndex(
            embedding_dim=table.dims,
            index_type=self.faiss_index_type,
            nlist=self.faiss_nlist,
            nprobe=self.faiss_nprobe,
        )
        index.add([r["id"] for r in rows], np.vstack([_blob_to_vec(r["vector"]) for r in rows]))
        index.save(path)
        with self._ann_lock:
            self._ann[table.name] = index
        logger.info(f"Vector index built for '{table.collection}': {index.size()} vectors ({self.faiss_index_type})")
        return index.size()

    def _ann_for(self, table: CollectionTable) -> Optional[FAISSIndex]:
        with self._ann_lock:
            index = self._ann.get(table.name)
            if index is not None:
                return index
            path = self.ann_dir / table.name
            if not (path / "faiss.index").exists():
                return None
            index = FAISSIndex(
                embedding_dim=table.dims,
                index_type=self.faiss_index_type,
                nlist=self.faiss_nlist,
                nprobe=self.faiss_nprobe,
            )
            try:
                index.load(path)
            except Exception as e:
                logger.warning(f"Failed to load vector index for '{table.collection}', using brute force: {e}")
                return None
            if index.index.d != table.dims:
                logger.warning(f"Stale vector index for '{table.collection}' ignored")
                return None
            self._ann[table.name] = index
            return index

    def build_text_index(self, table: CollectionTable) -> None:
        """(Re)build the full-text index from the current rows."""
        conn = self._get_conn()
        if not self._table_exists(f"{table.name}__fts"):
            conn.executescript(FTS_SQL.format(table=table.name))
        with conn:
            conn.execute(f'INSERT INTO "{table.name}__fts"("{table.name}__fts") VALUES(\'rebuild\')')
        logger.info(f"Text index built for '{table.collection}'")

    # ---- search ----

    def vector_search(self, table: CollectionTable, query_vec: np.ndarray, k: int) -> list[tuple[str, str, float]]:
        """Nearest chunk rows as ``(path, content, cosine_distance)``, ascending."""
        if k <= 0:
            return []
        try:
            return self._vector_search(table, query_vec, k)
        except sqlite3.Error as e:
            raise StorageError(f"Vector search failed on '{table.collection}': {e}") from e

    def _vector_search(self, table: CollectionTable, query_vec: np.ndarray, k: int) -> list[tuple[str, str, float]]:
        conn = self._get_conn()
        ann = self._ann_for(table)
        scored: list[tuple[float, int, str, str]] = []

        if ann is not None:
            max_id = ann.max_row_id
            live = conn.execute(f'SELECT COUNT(*) AS n FROM "{table.name}" WHERE id <= ?', (max_id,)).fetchone()["n"]
            # Ask for enough extra hits to cover rows deleted since the build
            hits = ann.search(query_vec, k + max(0, ann.size() - int(live)))
            if hits:
                by_id = dict(hits)
                placeholders = ",".join("?" * len(by_id))
                for r in conn.execute(
                    f'SELECT id, path, content FROM "{table.name}" WHERE id IN ({placeholders})',
                    list(by_id),
                ):
                    scored.append((by_id[r["id"]], r["id"], r["path"], r["content"]))
            tail_sql = f'SELECT id, path, content, vector FROM "{table.name}" WHERE id > ?'
            tail = conn.execute(tail_sql, (max_id,)).fetchall()
        else:
            tail = conn.execute(f'SELECT id, path, content, vector FROM "{table.name}"').fetchall()

        if tail:
            matrix = np.vstack([_blob_to_vec(r["vector"]) for r in tail])
            distances = _cosine_distances(query_vec, matrix)
            for r, d in zip(tail, distances):
                scored.append((float(d), r["id"], r["path"], r["content"]))

        scored.sort(key=lambda x: (x[0], x[1]))
        return [(path, content, dist) for dist, _, path, content in scored[:k]]

    def lexical_search(self, table: CollectionTable, query: str, k: int) -> list[tuple[str, str]]:
        """Full-text hits as ``(path, content)`` in BM25 order."""
        match = _match_expression(query)
        if not match or k <= 0:
            return []
        fts = f"{table.name}__fts"
        # Rows deleted since the last rebuild drop out of the join
        sql = f"""
        SELECT r.path, r.content
        FROM (
          SELECT rowid AS rid, bm25("{fts}") AS score
          FROM "{fts}"
          WHERE "{fts}" MATCH ?
          ORDER BY score
          LIMIT ?
        ) AS m
        JOIN "{table.name}" AS r ON r.id = m.rid
        ORDER BY m.score, r.id
        """
        try:
            if not self._table_exists(fts):
                return []
            rows = self._get_conn().execute(sql, (match, k)).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Text search failed on '{table.collection}': {e}") from e
        return [(r["path"], r["content"]) for r in rows]
