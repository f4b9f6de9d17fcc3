"""Per-collection table layout and the compatibility rule for reusing a table."""
from __future__ import annotations

from dataclasses import dataclass

# Bump when the row layout changes; older tables are dropped and rebuilt.
SCHEMA_VERSION = 1

REQUIRED_COLUMNS = frozenset({"path", "content", "vector", "mtime"})

REGISTRY_SQL = """
CREATE TABLE IF NOT EXISTS collection_tables (
  table_name TEXT PRIMARY KEY,
  collection TEXT NOT NULL,
  dims INTEGER NOT NULL,
  schema_version INTEGER NOT NULL,
  created_at TEXT DEFAULT (datetime('now'))
);
"""

ROWS_SQL = """
CREATE TABLE "{table}" (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  path TEXT NOT NULL,
  content TEXT NOT NULL,
  vector BLOB NOT NULL,
  mtime INTEGER NOT NULL
);
CREATE INDEX "{table}__path" ON "{table}"(path);
"""

# External-content FTS5 table: holds only the inverted index, text stays in
# the row table and is pulled in by the 'rebuild' command.
FTS_SQL = """
CREATE VIRTUAL TABLE "{table}__fts" USING fts5(
  content,
  content='{table}',
  content_rowid='id',
  tokenize='unicode61'
);
"""


@dataclass(frozen=True)
class TableSchema:
    """What an existing table looks like on disk."""
    columns: frozenset[str]
    dims: int
    version: int


def is_compatible(schema: TableSchema | None, expected_dim: int) -> bool:
    """True when a table can be reused as-is for vectors of ``expected_dim``."""
    if schema is None:
        return False
    if not REQUIRED_COLUMNS <= schema.columns:
        return False
    if schema.dims != expected_dim:
        return False
    return schema.version == SCHEMA_VERSION
