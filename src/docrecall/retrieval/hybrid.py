from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..models import SearchMatch


@dataclass
class HybridRanker:
    """Merge vector and lexical hits into one list with Reciprocal Rank Fusion.

    RRF only looks at rank positions, so the cosine distances of the vector
    side and the BM25 scores of the lexical side never have to share a scale.
    A path at 0-based rank ``r`` in a list contributes ``1 / (rrf_k + r + 1)``;
    a path found by both retrievers sums both contributions.

    Reference: Cormack, Clarke, Buettcher (2009) "Reciprocal Rank Fusion
    outperforms Condorcet and individual Rank Learning Methods"
    """

    rrf_k: int = 60  # Standard RRF constant

    def merge(
        self,
        vec: Sequence[SearchMatch],
        lex: Sequence[tuple[str, str]],
        limit: int,
    ) -> list[SearchMatch]:
        """Fuse per-file hits.

        Args:
            vec: Vector hits, one per path, best first
            lex: ``(path, snippet)`` lexical hits, one per path, best first
            limit: Maximum number of results to return

        Returns:
            Matches sorted by fused score (highest first); ties keep the order
            in which paths were first seen. The snippet and distance come from
            the vector hit when the path has one.
        """
        scores: dict[str, float] = {}
        snippets: dict[str, str] = {}
        distances: dict[str, Optional[float]] = {}

        for rank, m in enumerate(vec):
            scores[m.path] = scores.get(m.path, 0.0) + 1 / (self.rrf_k + rank + 1)
            snippets.setdefault(m.path, m.snippet)
            distances.setdefault(m.path, m.distance)

        for rank, (path, snippet) in enumerate(lex):
            scores[path] = scores.get(path, 0.0) + 1 / (self.rrf_k + rank + 1)
            # Only store if not already present (prefer the vector snippet)
            snippets.setdefault(path, snippet)
            distances.setdefault(path, None)

        # sorted() is stable: equal scores stay in first-seen order
        ordered = sorted(scores, key=lambda p: scores[p], reverse=True)
        return [
            SearchMatch(path=p, snippet=snippets[p], score=scores[p], kind="rrf", distance=distances[p])
            for p in ordered[:limit]
        ]
