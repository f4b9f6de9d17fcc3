"""Messages from background work to whoever drives the service.

Workers never touch caller state directly; they post one of these onto an
:class:`EventChannel` and the caller drains it at its own pace.
"""
from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Union

from .retrieval.normalize import DisplayMatch


@dataclass(frozen=True)
class IndexingProgress:
    collection: str
    current: int
    total: int
    path: str


@dataclass(frozen=True)
class IndexingComplete:
    collection: str
    files_indexed: int
    summary: str


@dataclass(frozen=True)
class IndexingError:
    collection: str
    message: str


@dataclass(frozen=True)
class ModelLoaded:
    model: str


@dataclass(frozen=True)
class ModelLoadError:
    message: str


@dataclass(frozen=True)
class RerankerLoaded:
    model: str


@dataclass(frozen=True)
class RerankerLoadError:
    message: str


@dataclass(frozen=True)
class SearchResults:
    generation: int
    query: str
    matches: tuple[DisplayMatch, ...]


@dataclass(frozen=True)
class SearchFailed:
    generation: int
    query: str
    message: str


Event = Union[
    IndexingProgress,
    IndexingComplete,
    IndexingError,
    ModelLoaded,
    ModelLoadError,
    RerankerLoaded,
    RerankerLoadError,
    SearchResults,
    SearchFailed,
]


class EventChannel:
    """Unbounded, thread-safe mailbox. ``send`` never blocks."""

    def __init__(self) -> None:
        self._q: "queue.Queue[Event]" = queue.Queue()

    def send(self, event: Event) -> None:
        self._q.put_nowait(event)

    def get(self, timeout: float | None = None) -> Event:
        """Next event; raises ``queue.Empty`` after ``timeout`` seconds."""
        return self._q.get(timeout=timeout)

    def drain(self) -> list[Event]:
        """Everything queued right now, oldest first."""
        out: list[Event] = []
        while True:
            try:
                out.append(self._q.get_nowait())
            except queue.Empty:
                return out
