from __future__ import annotations

# Suppress harmless multiprocessing resource tracker warnings (common on macOS)
import warnings
warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

import dataclasses
import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer

from .config import RecallConfig, load_config
from .errors import RecallError
from .service import RecallService

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _setup_logging(log_file: str | None, log_level: str, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(fmt, datefmt))
    handlers.append(console)

    if log_file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(logging.Formatter(fmt, datefmt))
        handlers.append(file_handler)

    logger = logging.getLogger("docrecall")
    logger.setLevel(level)
    logger.handlers.clear()
    for h in handlers:
        logger.addHandler(h)


def _cfg(config: str, verbose: bool = False) -> RecallConfig:
    cfg = load_config(config)
    _setup_logging(cfg.log_file, cfg.log_level, verbose)
    return cfg


def _service(cfg: RecallConfig, rerank: Optional[bool] = None) -> RecallService:
    if rerank is not None:
        cfg = dataclasses.replace(cfg, use_rerank=rerank)
    return RecallService(cfg)


def _fail(e: Exception) -> None:
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(code=1)


@app.command()
def init(index: str = typer.Option(..., help="Index directory"),
         out: str = typer.Option("config.toml", help="Write example config to this path")):
    """Write a starter config.toml."""
    outp = Path(out)
    outp.write_text(f"""active_collection = "Default"

[index]
dir = "{index}"

[embeddings]
# AllMiniLML6V2 | MultilingualE5Small | MultilingualE5Base, or any Hugging Face id
model = "MultilingualE5Base"
batch_size = 32
device = "cpu"
# Set to true to use cached models only (no HuggingFace downloads)
# Can also be controlled via HF_OFFLINE_MODE environment variable
offline_mode = false

[chunking]
max_bytes = 800
overlap_bytes = 200

[indexing]
embed_batch_size = 64
ann_threshold = 256
workers = 2

[retrieval]
limit = 5
score_threshold = 55.0
debounce_ms = 300
use_rerank = false

[faiss]
index_type = "IVF"
nlist = 100
nprobe = 10

[collections.Default]
description = "Default collection"
paths = []
""", encoding="utf-8")
    typer.echo(f"Wrote {outp}")


@app.command()
def index(
    root: str = typer.Argument(..., help="Directory to index"),
    config: str = typer.Option("config.toml"),
    collection: str = typer.Option(None, "--collection", "-c", help="Collection name (default: active collection)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print every file and enable DEBUG logging"),
):
    """Index a directory into a collection. Unchanged files are skipped."""
    cfg = _cfg(config, verbose)
    svc = _service(cfg)

    def progress(current: int, total: int, message: str) -> None:
        if verbose or not os.path.isabs(message):
            typer.echo(f"[{current}/{total}] {message}")

    try:
        svc.start(wait=True)
        count = svc.index_directory(root, collection=collection, progress=progress)
    except (RecallError, ValueError) as e:
        _fail(e)
    finally:
        svc.close()

    stats = svc.last_stats
    if stats is not None:
        typer.echo(
            f"Indexed {count} files: {stats.chunks_written} chunks, "
            f"{stats.files_skipped} unchanged, in {stats.elapsed_seconds:.1f}s"
        )
    else:
        typer.echo(f"Indexed {count} files")


@app.command()
def search(
    q: str = typer.Argument(..., help="Natural-language query"),
    config: str = typer.Option("config.toml"),
    collection: str = typer.Option(None, "--collection", "-c"),
    limit: int = typer.Option(None, "--limit", "-k", help="Maximum results (default: from config)"),
    rerank: bool = typer.Option(None, help="Override use_rerank config (true/false)"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
):
    """Search a collection."""
    cfg = _cfg(config)
    svc = _service(cfg, rerank)
    try:
        svc.start(wait=True)
        hits = svc.search(q, limit=limit, collection=collection)
    except RecallError as e:
        _fail(e)
    finally:
        svc.close()

    if as_json:
        typer.echo(json.dumps([dataclasses.asdict(h) for h in hits], indent=2))
        return
    if not hits:
        typer.echo("No results.")
        return
    for h in hits:
        pct = f"{h.percent:5.1f}%" if h.percent is not None else "  text"
        snippet = " ".join(h.snippet.split())[:160]
        typer.echo(f"{pct}  {h.path}")
        typer.echo(f"        {snippet}")


@app.command()
def reset(
    config: str = typer.Option("config.toml"),
    collection: str = typer.Option(None, "--collection", "-c"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Drop all indexed data of a collection."""
    cfg = _cfg(config)
    svc = _service(cfg)
    name = collection or svc.registry.active
    if not yes:
        typer.confirm(f"Drop the index of collection '{name}'?", abort=True)
    try:
        svc.reset_collection(name)
    except RecallError as e:
        _fail(e)
    finally:
        svc.close()
    typer.echo(f"Reset collection '{name}'")


@app.command()
def collections(
    config: str = typer.Option("config.toml"),
    as_json: bool = typer.Option(False, "--json"),
):
    """List configured collections with their indexed size."""
    cfg = _cfg(config)
    svc = _service(cfg)
    try:
        entries = svc.list_collections()
    except RecallError as e:
        _fail(e)
    finally:
        svc.close()

    if as_json:
        typer.echo(json.dumps(entries, indent=2))
        return
    for e in entries:
        marker = "*" if e["active"] else " "
        typer.echo(f"{marker} {e['name']}: {e['files']} files, {e['rows']} chunks")
        if e["description"]:
            typer.echo(f"      {e['description']}")
        for p in e["paths"]:
            typer.echo(f"      {p}")


@app.command()
def status(config: str = typer.Option("config.toml"),
           as_json: bool = typer.Option(False, "--json")):
    """Show index location, model settings and per-collection counts."""
    cfg = _cfg(config)
    svc = _service(cfg)
    try:
        info = svc.status()
    except RecallError as e:
        _fail(e)
    finally:
        svc.close()

    if as_json:
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"Index: {info['index_dir']}")
    typer.echo(f"Embedding model: {info['embedding_model']}")
    typer.echo(f"Active collection: {info['active_collection']}")
    for e in info["collections"]:
        typer.echo(f"  {e['name']}: {e['files']} files, {e['rows']} chunks")
    if info["unregistered_collections"]:
        typer.echo("Indexed but not in config: " + ", ".join(info["unregistered_collections"]))


if __name__ == "__main__":
    app()
