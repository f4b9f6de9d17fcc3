"""Collection name <-> SQL table name.

Collection names are free text typed by users; table names must be plain SQL
identifiers. SQLite compares identifiers case-insensitively (and the ANN
directories may live on a case-insensitive filesystem), so only lowercase
ASCII letters and digits pass through. Everything else, uppercase letters and
the underscore included, is hex-escaped. The encoding is reversible and two
different collections never share a table.
"""
from __future__ import annotations

import re

TABLE_PREFIX = "c_"

_ESCAPE_RE = re.compile(r"__([0-9a-f]{6})|_([0-9a-f]{4})")


def _passes_through(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("0" <= ch <= "9")


def table_name(collection: str) -> str:
    """Encode a collection name as a table name.

    >>> table_name("my docs")
    'c_my_0020docs'
    >>> table_name("Docs")
    'c__0044ocs'
    """
    out = [TABLE_PREFIX]
    for ch in collection:
        if _passes_through(ch):
            out.append(ch)
        elif ord(ch) > 0xFFFF:
            out.append(f"__{ord(ch):06x}")
        else:
            out.append(f"_{ord(ch):04x}")
    return "".join(out)


def collection_name(table: str) -> str | None:
    """Decode a table name produced by :func:`table_name`.

    Returns None when ``table`` is not one of ours.
    """
    if not table.startswith(TABLE_PREFIX):
        return None
    body = table[len(TABLE_PREFIX):]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "_":
            if not _passes_through(ch):
                return None
            out.append(ch)
            i += 1
            continue
        m = _ESCAPE_RE.match(body, i)
        if m is None:
            return None
        out.append(chr(int(m.group(1) or m.group(2), 16)))
        i = m.end()
    return "".join(out)
