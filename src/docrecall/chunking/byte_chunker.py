from __future__ import annotations

from dataclasses import dataclass

# Preferred chunk endings, best first. The chunk ends right after the first
# byte of the separator (the newline, the period, the space).
_SEPARATORS = (b"\n", b". ", b" ")


def _is_char_boundary(data: bytes, i: int) -> bool:
    """True when byte offset ``i`` does not fall inside a UTF-8 sequence."""
    if i <= 0 or i >= len(data):
        return True
    return (data[i] & 0xC0) != 0x80


@dataclass(frozen=True)
class ByteChunker:
    """Split text into overlapping chunks bounded by UTF-8 byte length.

    Each chunk holds at most ``max_bytes`` bytes and prefers to end at a line
    break, then a sentence end, then a word boundary. Consecutive chunks share
    up to ``overlap_bytes`` bytes. The split never lands inside a multi-byte
    character.
    """

    max_bytes: int = 800
    overlap_bytes: int = 200

    def __post_init__(self) -> None:
        if self.max_bytes < 4:
            raise ValueError(f"max_bytes must be >= 4 (one UTF-8 code point), got {self.max_bytes}")
        if self.overlap_bytes < 0:
            raise ValueError(f"overlap_bytes must be >= 0, got {self.overlap_bytes}")

    def spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` byte offsets into ``text.encode("utf-8")``."""
        data = text.encode("utf-8")
        n = len(data)
        spans: list[tuple[int, int]] = []
        start = 0
        prev_end = 0
        while start < n:
            if n - start <= self.max_bytes:
                spans.append((start, n))
                break

            end = start + self.max_bytes
            # max_bytes >= 4 guarantees a boundary strictly after start
            while end > start and not _is_char_boundary(data, end):
                end -= 1

            window = data[start:end]
            split_at = end
            for sep in _SEPARATORS:
                i = window.rfind(sep)
                # A separator inside the overlap would only repeat the previous chunk
                if i != -1 and start + i + 1 > prev_end:
                    split_at = start + i + 1
                    break
            if split_at <= prev_end:
                # Window too small to get past the previous chunk: drop the overlap
                start = prev_end
                continue
            spans.append((start, split_at))
            prev_end = split_at

            next_start = split_at - min(self.overlap_bytes, split_at - start)
            while next_start > start and not _is_char_boundary(data, next_start):
                next_start -= 1
            if next_start <= start:
                # Overlap would swallow the whole chunk: continue without overlap.
                next_start = split_at
            start = next_start
        return spans

    def chunk(self, text: str) -> list[str]:
        data = text.encode("utf-8")
        return [data[s:e].decode("utf-8") for s, e in self.spans(text)]


def chunk_with_overlap(text: str, max_bytes: int = 800, overlap_bytes: int = 200) -> list[str]:
    return ByteChunker(max_bytes=max_bytes, overlap_bytes=overlap_bytes).chunk(text)
