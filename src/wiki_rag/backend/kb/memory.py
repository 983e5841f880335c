# src/wiki_rag/backend/kb/memory.py

"""
[Role] Reference in-process collaborators: an immutable corpus snapshot with id lookup and an exact
       nearest-neighbour vector index over Record embeddings.
[Boundary] Brute-force (vectorised) search, no persistence; suitable for small corpora, local runs and gate tests.
[Upstream] built from ingestion exports via normalize_records.
[Downstream] pipelines/retrieval uses InMemoryCorpus as CorpusSnapshotProvider and InMemoryVectorIndex
             as VectorIndex.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

import numpy as np

from wiki_rag.backend.kb.protocols import VectorHit
from wiki_rag.backend.kb.records import normalize_records
from wiki_rag.backend.schemas.retrieval import Record
from wiki_rag.backend.utils.similarity import cosine_distances, l2_distances


DistanceMetric = Literal["cosine", "l2"]


class InMemoryCorpus:
    """
    [Role] CorpusSnapshotProvider over a fixed tuple of Records.
    [Boundary] Never mutated after construction; refresh by building a new instance (snapshot isolation).
    """

    def __init__(self, rows: Iterable[Any]) -> None:
        self._records: Tuple[Record, ...] = tuple(normalize_records(rows))
        self._by_id: Dict[str, Record] = {r.id: r for r in self._records}

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> Sequence[Record]:
        return self._records

    def get(self, record_id: str) -> Optional[Record]:
        return self._by_id.get(str(record_id))

    def page_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for r in self._records:
            seen.setdefault(r.page_id, None)
        return list(seen)


class InMemoryVectorIndex:
    """
    [Role] Exact k-NN over fixed-dimension embeddings; returns VectorHit(id, distance) ascending.
    [Boundary] Dimension is fixed by the first vector added (or `dim`); mismatches raise ValueError.
               Distances are computed over one stacked numpy matrix. Ties on distance are ordered by id
               so results are deterministic.
    """

    def __init__(self, *, dim: Optional[int] = None, metric: DistanceMetric = "cosine") -> None:
        if metric not in ("cosine", "l2"):
            raise ValueError(f"unsupported metric: {metric}")
        self.dim = dim
        self.metric: DistanceMetric = metric
        self._ids: List[str] = []
        self._positions: Dict[str, int] = {}
        self._rows: List[np.ndarray] = []
        self._matrix: Optional[np.ndarray] = None  # docstring: rebuilt lazily after add()

    def __len__(self) -> int:
        return len(self._ids)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Record],
        *,
        metric: DistanceMetric = "cosine",
    ) -> "InMemoryVectorIndex":
        index = cls(metric=metric)
        for rec in records:
            if rec.embedding:
                index.add(rec.id, rec.embedding)
        return index

    def add(self, record_id: str, embedding: Sequence[float]) -> None:
        vec = np.array(embedding, dtype=float)  # docstring: private copy, caller's sequence untouched
        if vec.ndim != 1 or vec.size == 0:
            raise ValueError("embedding must be a non-empty 1-d sequence")
        if self.dim is None:
            self.dim = int(vec.size)
        elif vec.size != self.dim:
            raise ValueError(f"embedding dimension {vec.size} != index dimension {self.dim}")
        rid = str(record_id)
        pos = self._positions.get(rid)
        if pos is None:
            self._positions[rid] = len(self._ids)
            self._ids.append(rid)
            self._rows.append(vec)
        else:
            self._rows[pos] = vec
        self._matrix = None

    def _as_matrix(self) -> np.ndarray:
        if self._matrix is None:
            matrix = np.vstack(self._rows)
            matrix.setflags(write=False)
            self._matrix = matrix
        return self._matrix

    def search(self, embedding: Sequence[float], limit: int) -> List[VectorHit]:
        if int(limit) <= 0 or not self._ids:
            return []
        query = np.asarray(embedding, dtype=float)
        if query.ndim != 1 or query.size != self.dim:
            raise ValueError(f"query dimension {query.size} != index dimension {self.dim}")

        matrix = self._as_matrix()
        distances = l2_distances(matrix, query) if self.metric == "l2" else cosine_distances(matrix, query)

        k = min(int(limit), len(self._ids))
        if k < distances.size:
            cutoff = np.partition(distances, k - 1)[k - 1]
            candidates = np.flatnonzero(distances <= cutoff)  # docstring: keeps every tie at the cutoff
        else:
            candidates = np.arange(distances.size)
        scored = sorted((float(distances[i]), self._ids[i]) for i in candidates)
        return [VectorHit(id=rid, distance=d) for d, rid in scored[:k]]
