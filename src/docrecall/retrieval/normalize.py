"""Turn raw matches into what a user sees: a similarity percentage and a cut-off."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..models import SearchMatch


def to_percent(distance: float) -> float:
    """Cosine distance -> similarity percentage, clamped at 0."""
    return max(0.0, 1.0 - distance) * 100.0


@dataclass(frozen=True)
class DisplayMatch:
    path: str
    snippet: str
    percent: Optional[float]  # None for hits found only by full-text search
    score: float


def display_matches(matches: Sequence[SearchMatch], threshold: float) -> list[DisplayMatch]:
    """Attach percentages and drop vector hits below ``threshold`` percent.

    Matches without a vector distance have no percentage to compare and are
    kept as they are.
    """
    out: list[DisplayMatch] = []
    for m in matches:
        if m.distance is None:
            out.append(DisplayMatch(path=m.path, snippet=m.snippet, percent=None, score=m.score))
            continue
        pct = to_percent(m.distance)
        if pct < threshold:
            continue
        out.append(DisplayMatch(path=m.path, snippet=m.snippet, percent=pct, score=m.score))
    return out
