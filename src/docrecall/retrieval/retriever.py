from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from ..embeddings.base import Embedder
from ..models import SearchMatch
from ..store import CollectionStore
from .hybrid import HybridRanker

logger = logging.getLogger(__name__)

# Vector rows fetched per requested result; several chunks of one file
# collapse into a single match.
OVERFETCH = 3


class Reranker(Protocol):
    def rerank(self, query: str, pairs: Sequence[tuple[str, str]]) -> list[tuple[str, str, float]]:
        ...


def best_per_path(rows: Sequence[tuple[str, str, float]], limit: int) -> list[SearchMatch]:
    """Keep the nearest chunk of each file, nearest files first."""
    best: dict[str, tuple[str, float]] = {}
    for path, content, dist in rows:
        prev = best.get(path)
        if prev is None or dist < prev[1]:
            best[path] = (content, dist)
    ordered = sorted(best.items(), key=lambda item: item[1][1])
    return [
        SearchMatch(path=path, snippet=content, score=dist, kind="distance", distance=dist)
        for path, (content, dist) in ordered[:limit]
    ]


def first_per_path(rows: Sequence[tuple[str, str]], limit: int) -> list[tuple[str, str]]:
    seen: set[str] = set()
    out: list[tuple[str, str]] = []
    for path, content in rows:
        if path in seen:
            continue
        seen.add(path)
        out.append((path, content))
        if len(out) >= limit:
            break
    return out


@dataclass
class Retriever:
    store: CollectionStore
    embedder: Embedder
    reranker: Optional[Reranker] = None
    ranker: HybridRanker = field(default_factory=HybridRanker)

    def search(self, collection: str, query: str, limit: int = 5) -> list[SearchMatch]:
        if not query.strip() or limit <= 0:
            return []

        table = self.store.open_table(collection)
        if table is None:
            return []

        qv = self.embedder.embed_query(query)
        if qv.shape[-1] != table.dims:
            logger.info(
                f"Collection '{collection}' holds {table.dims}-dim vectors, model gives {qv.shape[-1]}; "
                "re-index to search it"
            )
            return []

        vec_hits = best_per_path(self.store.vector_search(table, qv, limit * OVERFETCH), limit)
        lex_hits = first_per_path(self.store.lexical_search(table, query, limit), limit)

        merged = self.ranker.merge(vec_hits, lex_hits, limit)

        if self.reranker is not None and merged:
            distances = {m.path: m.distance for m in merged}
            reranked = self.reranker.rerank(query, [(m.path, m.snippet) for m in merged])
            merged = [
                SearchMatch(path=p, snippet=s, score=score, kind="rerank", distance=distances.get(p))
                for p, s, score in reranked
            ]

        return merged
