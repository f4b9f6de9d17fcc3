from .indexer import Indexer
from .scan_types import PendingChunk, ProgressCallback, ScanStats

__all__ = ["Indexer", "PendingChunk", "ProgressCallback", "ScanStats"]
