# playground/kb_gate/test_memory_index_gate.py

"""
[Role] kb_gate (vector): exact nearest-neighbour search over Record embeddings.
"""

from __future__ import annotations

import numpy as np
import pytest

from wiki_rag.backend.kb.memory import InMemoryCorpus, InMemoryVectorIndex
from wiki_rag.backend.kb.protocols import VectorHit, normalize_term_hits, normalize_vector_hits


pytestmark = pytest.mark.kb_gate


def test_cosine_search_orders_by_distance(memory_vector_index: InMemoryVectorIndex) -> None:
    hits = memory_vector_index.search([1.0, 0.0, 0.0, 0.0], 3)
    assert [h.id for h in hits] == ["704643076-0", "704643076-1", "704643100-0"]
    assert hits[0].distance == pytest.approx(0.0)
    assert hits[0].distance <= hits[1].distance <= hits[2].distance


def test_ties_are_broken_by_id() -> None:
    index = InMemoryVectorIndex(metric="l2")
    index.add("b", [1.0, 0.0])
    index.add("a", [1.0, 0.0])
    index.add("c", [0.0, 3.0])
    hits = index.search([1.0, 0.0], 10)
    assert [h.id for h in hits] == ["a", "b", "c"]
    assert hits[2].distance == pytest.approx(10 ** 0.5)


def test_dimension_is_enforced(corpus: InMemoryCorpus) -> None:
    index = InMemoryVectorIndex.from_records(corpus.records())
    assert index.dim == 4
    assert len(index) == 7
    with pytest.raises(ValueError):
        index.add("x", [1.0, 2.0])
    with pytest.raises(ValueError):
        index.search([1.0, 2.0], 3)
    with pytest.raises(ValueError):
        InMemoryVectorIndex(metric="dot")  # type: ignore[arg-type]


def test_empty_index_and_zero_limit() -> None:
    index = InMemoryVectorIndex()
    assert index.search([1.0], 5) == []
    index.add("a", [1.0])
    assert index.search([1.0], 0) == []


def test_hit_normalization_accepts_loose_rows() -> None:
    term = normalize_term_hits([{"id": " a ", "rank": 1}, {"record_id": "b", "score": "2.5"}, {"rank": 3}])
    assert [(h.id, h.rank, h.score) for h in term] == [("a", 1.0, None), ("b", None, 2.5)]

    vec = normalize_vector_hits([VectorHit(id="x", distance=0.1), {"id": "y", "_distance": 0.2}, {"id": "z"}])
    assert [(h.id, h.distance) for h in vec] == [("x", 0.1), ("y", 0.2)]
    assert normalize_vector_hits(None) == []


def test_add_copies_and_replaces_vectors() -> None:
    source = np.array([0.0, 1.0])
    index = InMemoryVectorIndex()
    index.add("a", source)
    index.add("b", (1.0, 0.0))
    source[:] = [1.0, 0.0]  # caller mutation after add must not leak into the index
    assert [h.id for h in index.search([0.0, 1.0], 1)] == ["a"]

    index.add("a", [1.0, 0.0])  # same id replaces the stored row
    assert len(index) == 2
    hits = index.search([1.0, 0.0], 2)
    assert [h.id for h in hits] == ["a", "b"]
    assert all(h.distance == pytest.approx(0.0) for h in hits)


def test_partial_selection_keeps_ties_at_the_cutoff() -> None:
    index = InMemoryVectorIndex(metric="l2")
    for rid in ("d", "c", "b", "a"):
        index.add(rid, [1.0, 1.0])
    index.add("z", [0.0, 0.0])
    hits = index.search(np.array([1.0, 1.0]), 2)
    assert [h.id for h in hits] == ["a", "b"]


def test_zero_vectors_sort_last_under_cosine() -> None:
    index = InMemoryVectorIndex()
    index.add("zero", [0.0, 0.0])
    index.add("opposite", [-1.0, 0.0])
    index.add("same", [2.0, 0.0])
    hits = index.search([1.0, 0.0], 3)
    assert [(h.id, round(h.distance, 6)) for h in hits] == [("same", 0.0), ("zero", 1.0), ("opposite", 2.0)]
