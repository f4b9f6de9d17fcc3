from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import numpy as np

ScoreKind = Literal["distance", "rrf", "rerank"]


@dataclass(frozen=True)
class Record:
    """One persisted chunk row: a file path, its chunk text, vector and mtime."""
    path: str
    content: str
    vector: np.ndarray
    mtime: int


@dataclass(frozen=True)
class SearchMatch:
    """A ranked hit for one source file.

    ``score`` changes meaning along the read path, ``kind`` says which one is
    in play:
    - distance: raw cosine distance from vector search (lower is better)
    - rrf: fused reciprocal-rank score (higher is better)
    - rerank: cross-encoder relevance (higher is better)

    ``distance`` keeps the best vector distance of the file when it is known,
    so the boundary can still turn it into a percentage after fusion.
    """
    path: str
    snippet: str
    score: float
    kind: ScoreKind = "distance"
    distance: Optional[float] = None
