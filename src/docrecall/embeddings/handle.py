"""Exclusive access to a loaded model.

A model is a single shared resource: one embedding or rerank call at a time.
Callers hold the lock for exactly one call, so the indexing pipeline and
interactive search interleave at call granularity instead of one of them
starving the other for a whole run.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Sequence

import numpy as np

from ..errors import ModelUnavailableError

logger = logging.getLogger(__name__)

LOADING = "loading"
READY = "ready"
FAILED = "failed"


class ModelHandle:
    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._ready = threading.Event()
        self._model: Any = None
        self._error: str | None = None
        self.state = LOADING

    def load(self, loader: Callable[[], Any]) -> Any:
        """Run ``loader`` and record the model it returns, or the failure."""
        try:
            model = loader()
        except Exception as e:
            logger.error(f"Failed to load {self.name}: {e}")
            self.set_failed(str(e))
            raise
        self.set_ready(model)
        return model

    def set_ready(self, model: Any) -> None:
        with self._state_lock:
            self._model = model
            self._error = None
            self.state = READY
        self._ready.set()
        logger.info(f"{self.name} ready")

    def set_failed(self, reason: str) -> None:
        with self._state_lock:
            self._model = None
            self._error = reason
            self.state = FAILED
        self._ready.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until loading finished (either way). Returns False on timeout."""
        return self._ready.wait(timeout)

    @property
    def is_ready(self) -> bool:
        return self.state == READY

    def ensure_ready(self) -> Any:
        """Return the loaded model or raise ModelUnavailableError."""
        with self._state_lock:
            state, model, error = self.state, self._model, self._error
        if state == LOADING:
            raise ModelUnavailableError(f"{self.name} is still loading")
        if state == FAILED:
            raise ModelUnavailableError(f"{self.name} failed to load: {error}")
        return model

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """Hold the model for one call."""
        model = self.ensure_ready()
        with self._lock:
            yield model


class LockedEmbedder:
    """Embedder facade that takes the handle's lock around every call."""

    def __init__(self, handle: ModelHandle) -> None:
        self._handle = handle

    @property
    def model_id(self) -> str:
        return self._handle.ensure_ready().model_id

    def embed_passages(self, texts: Sequence[str]) -> np.ndarray:
        with self._handle.acquire() as model:
            return model.embed_passages(texts)

    def embed_query(self, query: str) -> np.ndarray:
        with self._handle.acquire() as model:
            return model.embed_query(query)

    def probe_dimension(self) -> int:
        with self._handle.acquire() as model:
            return model.probe_dimension()


class LockedReranker:
    def __init__(self, handle: ModelHandle) -> None:
        self._handle = handle

    def rerank(self, query: str, pairs: Sequence[tuple[str, str]]) -> list[tuple[str, str, float]]:
        with self._handle.acquire() as model:
            return model.rerank(query, pairs)
