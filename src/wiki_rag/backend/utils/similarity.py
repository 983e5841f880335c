# src/wiki_rag/backend/utils/similarity.py

"""
[Role] String-similarity (edit distance) and vector-math helpers shared by the title stage, the in-memory
       vector index and fusion.
[Boundary] Pure functions: no I/O, no logging, inputs are never mutated.
[Upstream] pipelines/retrieval/title.py, kb/memory.py.
[Downstream] title_similarity feeds Candidate.title_similarity; distances feed Candidate.vector_distance.
"""

from __future__ import annotations

import unicodedata
from typing import List, Sequence

import numpy as np


def normalize_title(text: str) -> str:
    """
    Lower-case and drop whitespace, underscores and every Unicode punctuation character
    (brackets such as `()【】` included) so titles compare on their letters only.
    """
    lowered = str(text or "").lower()
    return "".join(
        ch for ch in lowered if not (ch.isspace() or ch == "_" or unicodedata.category(ch).startswith("P"))
    )


def levenshtein_distance(a: str, b: str) -> int:
    """Classic insert/delete/substitute edit distance, two-row DP."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur[j] = min(
                prev[j] + 1,  # deletion
                cur[j - 1] + 1,  # insertion
                prev[j - 1] + cost,  # substitution
            )
        prev = cur
    return prev[-1]


def title_similarity(a: str, b: str) -> float:
    """
    [Role] Normalized edit similarity in [0, 1] between two titles.
    [Boundary] both empty -> 1.0; exactly one empty -> 0.0 (after normalization).
    """
    s1 = normalize_title(a)
    s2 = normalize_title(b)
    if not s1:
        return 1.0 if not s2 else 0.0
    if not s2:
        return 0.0
    distance = levenshtein_distance(s1, s2)
    return 1.0 - (distance / max(len(s1), len(s2)))


# --- vector math ---


def _as_vector(v: Sequence[float]) -> np.ndarray:
    return np.asarray(v, dtype=float)


def _check_same_length(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape != b.shape:
        raise ValueError(f"vector length mismatch: {a.shape[0]} != {b.shape[0]}")


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    va, vb = _as_vector(a), _as_vector(b)
    _check_same_length(va, vb)
    return float(np.dot(va, vb))


def l2_norm(v: Sequence[float]) -> float:
    return float(np.linalg.norm(_as_vector(v)))


def l2_normalize(v: Sequence[float]) -> List[float]:
    """Return a new unit-length copy; a zero vector divides by 1 and comes back unchanged."""
    vec = _as_vector(v)
    norm = np.linalg.norm(vec)
    if norm == 0.0:
        norm = 1.0
    return (vec / norm).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine in [-1, 1]; a zero-norm side yields 0.0."""
    va, vb = _as_vector(a), _as_vector(b)
    _check_same_length(va, vb)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """1 - cosine, in [0, 2]; lower is more similar."""
    return 1.0 - cosine_similarity(a, b)


def l2_distance(a: Sequence[float], b: Sequence[float]) -> float:
    va, vb = _as_vector(a), _as_vector(b)
    _check_same_length(va, vb)
    return float(np.linalg.norm(va - vb))


def _check_matrix(matrix: np.ndarray, query: np.ndarray) -> None:
    if matrix.ndim != 2 or query.ndim != 1 or matrix.shape[1] != query.shape[0]:
        raise ValueError(f"query shape {query.shape} does not match matrix shape {matrix.shape}")


def cosine_distances(matrix: np.ndarray, query: Sequence[float]) -> np.ndarray:
    """
    [Role] Row-wise `1 - cosine(row, query)` for a (n, dim) matrix in one vectorised pass.
    [Boundary] Zero-norm rows (or a zero-norm query) get cosine 0, i.e. distance 1.0. Inputs are not modified.
    """
    m = np.asarray(matrix, dtype=float)
    q = _as_vector(query)
    _check_matrix(m, q)
    denom = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    sims = np.zeros(m.shape[0], dtype=float)
    nonzero = denom > 0.0
    sims[nonzero] = (m[nonzero] @ q) / denom[nonzero]
    return 1.0 - sims


def l2_distances(matrix: np.ndarray, query: Sequence[float]) -> np.ndarray:
    """Row-wise Euclidean distance between a (n, dim) matrix and `query`."""
    m = np.asarray(matrix, dtype=float)
    q = _as_vector(query)
    _check_matrix(m, q)
    return np.linalg.norm(m - q, axis=1)
