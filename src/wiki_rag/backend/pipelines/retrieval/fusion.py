# src/wiki_rag/backend/pipelines/retrieval/fusion.py

"""
[Role] fusion: merge the per-stage Candidate lists, de-duplicate by page (or chunk), compute one
       composite score from the per-stage signals and return a totally ordered, truncated list.
[Boundary] Pure and deterministic: the same stage lists always give the same output. Stages are
           scale-independent inputs (similarity, ratio, rank, distance, label score); fusion owns the
           normalization. No I/O, no collaborators.
[Upstream] pipeline.py (early-exit path with title-exact only, or after the fan-out join).
[Downstream] pipeline.py maps the result to RetrievalHit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from wiki_rag.backend.utils.constants import DEDUPE_BY_CHUNK, DEDUPE_BY_PAGE, STAGE_PRIORITY

from .types import Candidate, stage_priority


StageResults = Union[Mapping[str, Sequence[Candidate]], Iterable[Candidate]]


@dataclass(frozen=True)
class FusionWeights:
    """Named per-signal weights of the composite score."""

    title_exact: float = 1.0
    title_partial: float = 0.4
    vector: float = 0.3
    lexical: float = 0.3
    label: float = 0.2

    @classmethod
    def from_settings(cls, settings: Any) -> "FusionWeights":
        return cls(
            title_exact=float(settings.WIKI_RAG_WEIGHT_TITLE_EXACT),
            title_partial=float(settings.WIKI_RAG_WEIGHT_TITLE_PARTIAL),
            vector=float(settings.WIKI_RAG_WEIGHT_VECTOR),
            lexical=float(settings.WIKI_RAG_WEIGHT_LEXICAL),
            label=float(settings.WIKI_RAG_WEIGHT_LABEL),
        )

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "FusionWeights":
        """Return a copy with the known keys of `overrides` applied; unknown keys raise ValueError."""
        if not overrides:
            return self
        known = set(self.to_dict())
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"unknown fusion weight(s): {', '.join(unknown)}")
        return replace(self, **{k: float(v) for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, float]:
        return {
            "title_exact": self.title_exact,
            "title_partial": self.title_partial,
            "vector": self.vector,
            "lexical": self.lexical,
            "label": self.label,
        }


@dataclass
class _Merged:
    """Mutable accumulator for one dedupe key."""

    first: Candidate
    sources: List[str]
    title_similarity: Optional[float] = None
    matched_keywords: Tuple[str, ...] = ()
    match_ratio: Optional[float] = None
    label_score: Optional[float] = None
    lexical_rank: Optional[int] = None
    vector_distance: Optional[float] = None
    stage_details: Dict[str, Any] = field(default_factory=dict)


def _max_opt(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _min_opt(a: Any, b: Any) -> Any:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _group_by_stage(stage_results: StageResults) -> List[Tuple[str, List[Candidate]]]:
    """
    [Role] Arrange the input as (stage, candidates) pairs in fixed stage-priority order.
    [Boundary] A flat iterable is grouped by Candidate.source; unknown stage tags go last, by name.
    """
    grouped: Dict[str, List[Candidate]] = {}
    if isinstance(stage_results, Mapping):
        for stage, cands in stage_results.items():
            grouped.setdefault(str(stage), []).extend(cands or [])
    else:
        for cand in stage_results:
            grouped.setdefault(str(cand.source), []).append(cand)
    order = sorted(grouped, key=lambda s: (stage_priority(s), s))
    return [(stage, grouped[stage]) for stage in order]


def _dedupe_key(candidate: Candidate, granularity: str) -> str:
    return candidate.record_id if granularity == DEDUPE_BY_CHUNK else candidate.page_id


def _merge(groups: List[Tuple[str, List[Candidate]]], granularity: str) -> Dict[str, _Merged]:
    merged: Dict[str, _Merged] = {}
    for stage, cands in groups:
        for cand in cands:
            key = _dedupe_key(cand, granularity)
            acc = merged.get(key)
            if acc is None:
                acc = _Merged(first=cand, sources=[])
                merged[key] = acc
            if stage not in acc.sources:
                acc.sources.append(stage)
            acc.title_similarity = _max_opt(acc.title_similarity, cand.title_similarity)
            acc.match_ratio = _max_opt(acc.match_ratio, cand.match_ratio)
            acc.label_score = _max_opt(acc.label_score, cand.label_score)
            acc.lexical_rank = _min_opt(acc.lexical_rank, cand.lexical_rank)
            acc.vector_distance = _min_opt(acc.vector_distance, _finite_or_none(cand.vector_distance))
            if cand.matched_keywords:
                acc.matched_keywords = tuple(dict.fromkeys(acc.matched_keywords + tuple(cand.matched_keywords)))
            acc.stage_details.setdefault(stage, dict(cand.score_details or {}))  # docstring: first row per stage
    return merged


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _normalized_vector(distance: Optional[float], max_distance: float) -> float:
    """1 - d / max_d, clamped to [0, 1] (negative distances from inner-product indexes saturate at 1.0)."""
    if distance is None:
        return 0.0
    if max_distance <= 0.0:
        return 1.0  # docstring: no positive distance observed
    return min(1.0, max(0.0, 1.0 - float(distance) / max_distance))


def _composite(acc: _Merged, weights: FusionWeights, max_distance: float) -> Tuple[float, Dict[str, float]]:
    """composite = sum(weight * normalized signal); missing signals contribute 0."""
    breakdown = {
        "title_exact": weights.title_exact * float(acc.title_similarity or 0.0),
        "title_partial": weights.title_partial * float(acc.match_ratio or 0.0),
        "vector": weights.vector * _normalized_vector(acc.vector_distance, max_distance),
        "lexical": weights.lexical * (1.0 / float(acc.lexical_rank) if acc.lexical_rank else 0.0),
        "label": weights.label * float(acc.label_score or 0.0),
    }
    return sum(breakdown.values()), breakdown


def fuse_candidates(
    stage_results: StageResults,
    top_k: int,
    weights: Optional[FusionWeights] = None,
    granularity: str = DEDUPE_BY_PAGE,
) -> List[Candidate]:
    """
    [Role] Merge -> score -> order -> truncate.
    [Boundary] Output holds at most one Candidate per dedupe key and at most top_k items; it is a prefix of
               the same call with a larger top_k. Ordering: composite desc, then the stage priority of the
               primary source, then the dedupe key.
    [Upstream] pipeline.py.
    [Downstream] RetrievalHit mapping; score_details makes composite_score reproducible on its own.
    """
    if int(top_k) <= 0:
        return []
    if granularity not in (DEDUPE_BY_PAGE, DEDUPE_BY_CHUNK):
        raise ValueError(f"unknown dedupe granularity: {granularity!r}")
    w = weights or FusionWeights()

    merged = _merge(_group_by_stage(stage_results), granularity)
    distances = [acc.vector_distance for acc in merged.values() if acc.vector_distance is not None]
    max_distance = max(distances) if distances else 0.0

    scored: List[Tuple[float, int, str, Candidate]] = []
    for key, acc in merged.items():
        composite, breakdown = _composite(acc, w, max_distance)
        primary = acc.sources[0]
        fused = replace(
            acc.first,
            source=primary,
            sources=tuple(acc.sources),
            title_similarity=acc.title_similarity,
            matched_keywords=acc.matched_keywords,
            match_ratio=acc.match_ratio,
            label_score=acc.label_score,
            lexical_rank=acc.lexical_rank,
            vector_distance=acc.vector_distance,
            composite_score=composite,
            score_details={
                "composite_score": composite,
                "breakdown": breakdown,
                "weights": w.to_dict(),
                "max_distance": max_distance,
                "dedupe_key": key,
                "granularity": granularity,
                "stages": dict(acc.stage_details),
            },
        )
        scored.append((composite, stage_priority(primary), key, fused))

    scored.sort(key=lambda x: (-x[0], x[1], x[2]))
    return [cand for _, _, _, cand in scored[: int(top_k)]]


def count_by_stage(stage_results: Mapping[str, Sequence[Candidate]]) -> Dict[str, int]:
    """Raw per-stage hit counts (pre-fusion), every known stage present."""
    counts = {stage: 0 for stage in STAGE_PRIORITY}
    for stage, cands in stage_results.items():
        counts[str(stage)] = len(cands or [])
    return counts
