from __future__ import annotations

from typing import Protocol, Sequence
import numpy as np


class Embedder(Protocol):
    model_id: str

    def embed_passages(self, texts: Sequence[str]) -> np.ndarray:
        ...

    def embed_query(self, query: str) -> np.ndarray:
        ...

    def probe_dimension(self) -> int:
        ...
