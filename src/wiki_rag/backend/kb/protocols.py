# src/wiki_rag/backend/kb/protocols.py

"""
[Role] Collaborator contracts consumed by the retrieval engine (term index, vector index, embedder,
       keyword extractor, corpus snapshot) plus the normalized hit shapes adapters work with.
[Boundary] Contracts only. `search`/`embed`/`extract` may be sync or async; adapters handle both.
[Upstream] kb/memory.py and kb/fts.py provide reference implementations; hosts plug in their own.
[Downstream] pipelines/retrieval/{keyword,vector,query}.py call through these protocols.
"""

from __future__ import annotations

import asyncio
import inspect
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from wiki_rag.backend.schemas.retrieval import Record


@dataclass(frozen=True)
class TermHit:
    """Term index row: record id, the index's own rank (orders the hits) and raw score (audit only)."""

    id: str
    rank: Optional[float] = None
    score: Optional[float] = None


@dataclass(frozen=True)
class VectorHit:
    """Nearest-neighbour row: record id plus raw distance (lower = more similar)."""

    id: str
    distance: float


@runtime_checkable
class TermIndex(Protocol):
    def search(self, query: str, limit: int) -> Any:  # -> Sequence[TermHit | Mapping] (maybe awaitable)
        ...


@runtime_checkable
class VectorIndex(Protocol):
    def search(self, embedding: Sequence[float], limit: int) -> Any:  # -> Sequence[VectorHit | Mapping]
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> Any:  # -> Sequence[float]
        ...


@runtime_checkable
class KeywordExtractor(Protocol):
    def extract(self, text: str) -> Any:  # -> Sequence[str]
        ...


@runtime_checkable
class CorpusSnapshotProvider(Protocol):
    """Immutable view of the Record set for one request."""

    def records(self) -> Sequence[Record]:
        ...

    def get(self, record_id: str) -> Optional[Record]:
        ...


def _field(row: Any, *keys: str) -> Any:
    for key in keys:
        value = row.get(key) if isinstance(row, Mapping) else getattr(row, key, None)
        if value is not None:
            return value
    return None


def _as_float(value: Any) -> Optional[float]:
    """float(value), or None when it is missing, non-numeric or not finite (nan/inf)."""
    if value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def normalize_term_hits(rows: Optional[Iterable[Any]]) -> List[TermHit]:
    """
    [Role] Coerce term index rows (`{id, rank}` mappings, objects, or TermHit) into TermHit, preserving order.
    [Boundary] Rows without an id are dropped; a non-finite rank or score becomes None.
    """
    out: List[TermHit] = []
    for row in rows or ():
        if isinstance(row, TermHit):
            out.append(replace(row, rank=_as_float(row.rank), score=_as_float(row.score)))
            continue
        rid = _field(row, "id", "record_id", "ref")
        if rid is None or str(rid).strip() == "":
            continue
        out.append(
            TermHit(
                id=str(rid).strip(),
                rank=_as_float(_field(row, "rank")),
                score=_as_float(_field(row, "score")),
            )
        )
    return out


def normalize_vector_hits(rows: Optional[Iterable[Any]]) -> List[VectorHit]:
    """
    [Role] Coerce vector index rows (`{id, distance}` / `_distance`) into VectorHit, preserving order.
    [Boundary] Rows without an id or a finite numeric distance are dropped.
    """
    out: List[VectorHit] = []
    for row in rows or ():
        if isinstance(row, VectorHit):
            if _as_float(row.distance) is not None:
                out.append(row)
            continue
        rid = _field(row, "id", "record_id")
        distance = _as_float(_field(row, "distance", "_distance"))
        if rid is None or str(rid).strip() == "" or distance is None:
            continue
        out.append(VectorHit(id=str(rid).strip(), distance=distance))
    return out


async def call_collaborator(method: Callable[..., Any], *args: Any) -> Any:
    """
    [Role] Invoke a collaborator method that may be sync or async.
    [Boundary] Coroutine functions are awaited on the loop; plain callables run in a worker thread so a
               blocking client cannot stall the other fanned-out stages. Exceptions propagate.
    """
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    result = await asyncio.to_thread(method, *args)
    if inspect.isawaitable(result):
        return await result
    return result
