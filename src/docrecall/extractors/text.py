from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .base import Extracted

TEXT_SUFFIXES = (
    ".txt", ".md", ".markdown",
    ".rs", ".toml", ".json", ".yaml", ".yml",
    ".js", ".ts", ".jsx", ".tsx", ".py", ".rb", ".go", ".java",
    ".c", ".cpp", ".h", ".hpp", ".cs",
    ".html", ".htm", ".xml", ".svg", ".css", ".scss", ".less",
    ".sql", ".sh", ".bash", ".ps1", ".bat", ".cmd",
    ".csv", ".tsv", ".log", ".ini", ".cfg", ".conf", ".env",
    ".tex", ".bib", ".rst", ".adoc",
)

# Extension-less files that are text by convention
TEXT_NAMES = ("dockerfile", "makefile", ".gitignore", ".env", ".editorconfig")


@dataclass
class TextExtractor:
    supported_suffixes = TEXT_SUFFIXES
    supported_names = TEXT_NAMES

    def extract(self, path: Path) -> Extracted:
        # Strict decode: binary files mislabelled as text raise and get skipped
        text = path.read_bytes().decode("utf-8")
        return Extracted(text=text, metadata={"bytes": path.stat().st_size})
