from .hybrid import HybridRanker
from .normalize import DisplayMatch, display_matches, to_percent
from .retriever import Retriever

__all__ = ["DisplayMatch", "HybridRanker", "Retriever", "display_matches", "to_percent"]
