from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pdfplumber  # type: ignore

from .base import Extracted


@dataclass
class PdfExtractor:
    """Text layer of a PDF, pages joined by blank lines. Scanned pages yield nothing."""

    supported_suffixes = (".pdf",)
    supported_names = ()

    def extract(self, path: Path) -> Extracted:
        pages: list[str] = []
        with pdfplumber.open(str(path)) as pdf:
            for page in pdf.pages:
                pages.append(page.extract_text() or "")

        text = "\n\n".join(p for p in pages if p.strip()).strip()
        meta: dict[str, Any] = {"page_count": len(pages)}
        return Extracted(text=text, metadata=meta)
