from __future__ import annotations

from pathlib import Path

from .base import Extracted, Extractor, ExtractorRegistry
from .pdf import PdfExtractor
from .text import TEXT_NAMES, TEXT_SUFFIXES, TextExtractor


def default_registry() -> ExtractorRegistry:
    reg = ExtractorRegistry()
    reg.register(TextExtractor())
    reg.register(PdfExtractor())
    return reg


_DEFAULT = default_registry()


def read_file_content(path: str | Path) -> str | None:
    """Plain text of a supported file, or None."""
    return _DEFAULT.read_text(Path(path))


__all__ = [
    "Extracted",
    "Extractor",
    "ExtractorRegistry",
    "PdfExtractor",
    "TEXT_NAMES",
    "TEXT_SUFFIXES",
    "TextExtractor",
    "default_registry",
    "read_file_content",
]
