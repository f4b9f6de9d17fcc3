"""docrecall: local document indexer with hybrid semantic + full-text search.

Files under a directory are chunked, embedded and stored per collection in a
local SQLite database; queries are answered by fusing vector and full-text
hits, optionally reranked by a cross-encoder. All data stays local.

Public API:
- RecallConfig
- RecallService
- Indexer
- Retriever
"""

from .config import RecallConfig, load_config
from .indexer.indexer import Indexer
from .retrieval.retriever import Retriever
from .service import RecallService, SearchScheduler

__all__ = ["RecallConfig", "RecallService", "SearchScheduler", "Indexer", "Retriever", "load_config"]
