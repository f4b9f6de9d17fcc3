from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import tomllib

from .errors import CollectionError

DEFAULT_COLLECTION = "Default"


def _expand(p: str) -> str:
    return os.path.expandvars(os.path.expanduser(p))


@dataclass
class CollectionInfo:
    """Registry entry for one collection: a description and its indexed roots."""

    description: str = ""
    indexed_paths: list[str] = field(default_factory=list)


class CollectionRegistry:
    """Maps collection name -> description + indexed root paths.

    The core only reads and updates this in memory; persisting it is left to
    whatever shell owns the config file. "Default" always exists.
    """

    def __init__(
        self,
        collections: dict[str, CollectionInfo] | None = None,
        active: str = DEFAULT_COLLECTION,
    ) -> None:
        self._collections: dict[str, CollectionInfo] = dict(collections or {})
        self._collections.setdefault(DEFAULT_COLLECTION, CollectionInfo())
        self.active = active if active in self._collections else DEFAULT_COLLECTION

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def names(self) -> list[str]:
        others = sorted(n for n in self._collections if n != DEFAULT_COLLECTION)
        return [DEFAULT_COLLECTION, *others]

    def get(self, name: str) -> CollectionInfo | None:
        return self._collections.get(name)

    def add(self, name: str, description: str = "") -> CollectionInfo:
        name = name.strip()
        if not name:
            raise CollectionError("Collection name cannot be empty")
        if name in self._collections:
            raise CollectionError(f"Collection '{name}' already exists")
        info = CollectionInfo(description=description)
        self._collections[name] = info
        return info

    def remove(self, name: str) -> None:
        if name == DEFAULT_COLLECTION:
            raise CollectionError("The Default collection cannot be deleted")
        if name not in self._collections:
            raise CollectionError(f"Unknown collection '{name}'")
        del self._collections[name]
        if self.active == name:
            self.active = DEFAULT_COLLECTION

    def set_active(self, name: str) -> None:
        if name not in self._collections:
            raise CollectionError(f"Unknown collection '{name}'")
        self.active = name

    def record_path(self, name: str, root: str) -> None:
        info = self._collections.get(name)
        if info is None:
            raise CollectionError(f"Unknown collection '{name}'")
        if root not in info.indexed_paths:
            info.indexed_paths.append(root)


@dataclass(frozen=True)
class RecallConfig:
    """Configuration for a docrecall index.

    Collections are declared under ``[collections.<name>]``; everything else is
    engine tuning. Thresholds are deployment-dependent, so they live here
    rather than in the algorithms that use them.
    """

    index_dir: Path

    def __post_init__(self):
        """Convert string paths to Path objects and expand ~ and environment variables."""
        if isinstance(self.index_dir, str):
            object.__setattr__(self, 'index_dir', Path(_expand(self.index_dir)))

    # Embeddings
    embedding_model: str = "MultilingualE5Base"
    embedding_device: str = "cpu"  # cpu|cuda|mps
    embedding_batch_size: int = 32  # encoder micro-batch inside one embedding call
    offline_mode: bool = False

    # Chunking
    chunk_max_bytes: int = 800
    chunk_overlap_bytes: int = 200

    # Indexing
    embed_batch_size: int = 64  # chunks per flushed batch
    ann_threshold: int = 256  # newly read files needed to (re)build the ANN index
    workers: int = 2

    # Retrieval
    search_limit: int = 5
    score_threshold: float = 55.0  # percent
    search_debounce_ms: int = 300
    use_rerank: bool = False
    rerank_model: str = "jinaai/jina-reranker-v2-base-multilingual"
    rerank_device: str = "cpu"
    rerank_trust_remote_code: bool = True

    # FAISS
    faiss_index_type: str = "IVF"  # Flat|IVF|HNSW
    faiss_nlist: int = 100
    faiss_nprobe: int = 10

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    # Collections
    collections: dict[str, CollectionInfo] = field(default_factory=dict)
    active_collection: str = DEFAULT_COLLECTION

    @property
    def db_path(self) -> Path:
        return self.index_dir / "docrecall.sqlite"

    def registry(self) -> CollectionRegistry:
        """Build a fresh in-memory registry from the configured collections."""
        collections = {
            name: CollectionInfo(info.description, list(info.indexed_paths))
            for name, info in self.collections.items()
        }
        return CollectionRegistry(collections, active=self.active_collection)

    @staticmethod
    def from_toml(path: str | Path) -> "RecallConfig":
        data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
        index = data.get("index", {})
        emb = data.get("embeddings", {})
        chunking = data.get("chunking", {})
        indexing = data.get("indexing", {})
        ret = data.get("retrieval", {})
        faiss_cfg = data.get("faiss", {})
        logging_cfg = data.get("logging", {})

        if "dir" not in index:
            raise ValueError("Config requires [index] dir setting")
        index_dir = Path(_expand(index["dir"])).resolve()

        batch_size = int(emb.get("batch_size", 32))
        if batch_size <= 0 or batch_size > 10000:
            raise ValueError(f"Invalid batch_size: {batch_size}. Must be between 1 and 10000.")

        device = emb.get("device", "cpu")
        valid_devices = ("cpu", "cuda", "mps")
        if device not in valid_devices:
            raise ValueError(f"Invalid device: {device}. Must be one of {valid_devices}.")

        max_bytes = int(chunking.get("max_bytes", 800))
        overlap_bytes = int(chunking.get("overlap_bytes", 200))
        if max_bytes < 4 or max_bytes > 100_000:
            raise ValueError(f"Invalid max_bytes: {max_bytes}. Must be between 4 and 100000.")
        if overlap_bytes < 0 or overlap_bytes >= max_bytes:
            raise ValueError(f"Invalid overlap_bytes: {overlap_bytes}. Must be between 0 and max_bytes - 1.")

        embed_batch_size = int(indexing.get("embed_batch_size", 64))
        if embed_batch_size <= 0 or embed_batch_size > 10000:
            raise ValueError(f"Invalid embed_batch_size: {embed_batch_size}. Must be between 1 and 10000.")
        ann_threshold = int(indexing.get("ann_threshold", 256))
        if ann_threshold < 0:
            raise ValueError(f"Invalid ann_threshold: {ann_threshold}. Must be >= 0.")
        workers = int(indexing.get("workers", 2))
        if workers <= 0 or workers > 64:
            raise ValueError(f"Invalid workers: {workers}. Must be between 1 and 64.")

        limit = int(ret.get("limit", 5))
        if limit <= 0 or limit > 1000:
            raise ValueError(f"Invalid limit: {limit}. Must be between 1 and 1000.")
        score_threshold = float(ret.get("score_threshold", 55.0))
        if score_threshold < 0 or score_threshold > 100:
            raise ValueError(f"Invalid score_threshold: {score_threshold}. Must be between 0 and 100.")
        debounce_ms = int(ret.get("debounce_ms", 300))
        if debounce_ms < 0:
            raise ValueError(f"Invalid debounce_ms: {debounce_ms}. Must be >= 0.")

        index_type = faiss_cfg.get("index_type", "IVF")
        if index_type not in ("Flat", "IVF", "HNSW"):
            raise ValueError(f"Invalid faiss index_type: {index_type}. Must be one of Flat, IVF, HNSW.")

        # Environment variable takes precedence if explicitly set
        offline_mode_env = os.environ.get("HF_OFFLINE_MODE")
        if offline_mode_env is not None:
            offline_mode = offline_mode_env.lower() in ("1", "true", "yes")
        else:
            offline_mode = bool(emb.get("offline_mode", False))

        # SIDE EFFECT: affects the whole process
        if offline_mode:
            os.environ.setdefault("HF_HUB_OFFLINE", "1")
            os.environ.setdefault("TRANSFORMERS_OFFLINE", "1")

        collections: dict[str, CollectionInfo] = {}
        for name, c in data.get("collections", {}).items():
            if not isinstance(c, dict):
                raise ValueError(f"Collection '{name}' must be a table")
            collections[name] = CollectionInfo(
                description=str(c.get("description", "")),
                indexed_paths=[str(Path(_expand(p)).resolve()) for p in c.get("paths", [])],
            )

        active = data.get("active_collection", DEFAULT_COLLECTION)
        if active != DEFAULT_COLLECTION and active not in collections:
            raise ValueError(f"active_collection '{active}' is not declared under [collections]")

        return RecallConfig(
            index_dir=index_dir,
            embedding_model=emb.get("model", "MultilingualE5Base"),
            embedding_device=device,
            embedding_batch_size=batch_size,
            offline_mode=offline_mode,
            chunk_max_bytes=max_bytes,
            chunk_overlap_bytes=overlap_bytes,
            embed_batch_size=embed_batch_size,
            ann_threshold=ann_threshold,
            workers=workers,
            search_limit=limit,
            score_threshold=score_threshold,
            search_debounce_ms=debounce_ms,
            use_rerank=bool(ret.get("use_rerank", False)),
            rerank_model=ret.get("rerank_model", "jinaai/jina-reranker-v2-base-multilingual"),
            rerank_device=ret.get("rerank_device", "cpu"),
            rerank_trust_remote_code=bool(ret.get("rerank_trust_remote_code", True)),
            faiss_index_type=index_type,
            faiss_nlist=int(faiss_cfg.get("nlist", 100)),
            faiss_nprobe=int(faiss_cfg.get("nprobe", 10)),
            log_level=logging_cfg.get("level", "INFO"),
            log_file=logging_cfg.get("file"),
            collections=collections,
            active_collection=active,
        )


def load_config(path: str | Path) -> RecallConfig:
    """Load configuration from a TOML file."""
    return RecallConfig.from_toml(path)
