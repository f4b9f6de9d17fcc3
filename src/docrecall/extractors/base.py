from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Extracted:
    text: str
    metadata: dict[str, Any]


class Extractor(Protocol):
    supported_suffixes: tuple[str, ...]
    supported_names: tuple[str, ...]

    def extract(self, path: Path) -> Extracted:
        ...


class ExtractorRegistry:
    """Picks an extractor by bare file name first, then by suffix."""

    def __init__(self) -> None:
        self._by_suffix: dict[str, Extractor] = {}
        self._by_name: dict[str, Extractor] = {}

    def register(self, extractor: Extractor) -> None:
        for s in extractor.supported_suffixes:
            self._by_suffix[s.lower()] = extractor
        for n in getattr(extractor, "supported_names", ()):
            self._by_name[n.lower()] = extractor

    def get(self, path: Path) -> Extractor | None:
        by_name = self._by_name.get(path.name.lower())
        if by_name is not None:
            return by_name
        return self._by_suffix.get(path.suffix.lower())

    def read_text(self, path: Path) -> str | None:
        """Extract plain text, or None when the file is unsupported or unreadable."""
        extractor = self.get(path)
        if extractor is None:
            return None
        try:
            return extractor.extract(path).text
        except Exception as e:
            logger.debug(f"Skipping {path}: {e}")
            return None
