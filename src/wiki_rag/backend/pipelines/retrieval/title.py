# src/wiki_rag/backend/pipelines/retrieval/title.py

"""
[Role] Title match stage: exact (edit-similarity) and partial (keyword containment) title matching over
       the full corpus snapshot.
[Boundary] In-process, CPU-bound, no collaborator calls; operates on canonical Records only.
[Upstream] pipeline.py runs search_title_exact first (early exit) and search_title_partial in the fan-out.
[Downstream] fusion consumes the tagged Candidates (title_similarity / match_ratio signals).
"""

from __future__ import annotations

import time
from typing import List, Sequence

from wiki_rag.backend.schemas.retrieval import Record
from wiki_rag.backend.utils.constants import (
    DEFAULT_TITLE_EXACT_THRESHOLD,
    DEFAULT_TITLE_PARTIAL_MIN_RATIO,
    SOURCE_TITLE_EXACT,
    SOURCE_TITLE_PARTIAL,
)
from wiki_rag.backend.utils.logging_ import get_logger, truncate_text
from wiki_rag.backend.utils.similarity import title_similarity

from .types import Candidate


logger = get_logger("retrieval.title")


def search_title_exact(
    query: str,
    records: Sequence[Record],
    threshold: float = DEFAULT_TITLE_EXACT_THRESHOLD,
) -> List[Candidate]:
    """
    [Role] Keep records whose title_similarity(title, query) >= threshold, best first.
    [Boundary] A non-empty result lets the orchestrator skip every other stage.
    [Upstream] pipeline.py (Start state).
    [Downstream] fusion (early-exit path) -> RetrievalBundle.
    """
    started = time.perf_counter()
    scored = []
    for rec in records:
        sim = title_similarity(rec.title, query)
        if sim >= threshold:
            scored.append((sim, rec))
    scored.sort(key=lambda x: (-x[0], x[1].id))  # similarity desc, id for stable order

    out = [
        Candidate.from_record(
            rec,
            source=SOURCE_TITLE_EXACT,
            title_similarity=float(sim),
            score_details={"title_similarity": float(sim), "threshold": float(threshold)},
        )
        for sim, rec in scored
    ]
    if out:
        logger.info(
            "title exact matches",
            extra={
                "stage": SOURCE_TITLE_EXACT,
                "hit_count": len(out),
                "top_title": truncate_text(out[0].title, max_len=80),
                "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 3),
            },
        )
    return out


def search_title_partial(
    keywords: Sequence[str],
    records: Sequence[Record],
    min_match_ratio: float = DEFAULT_TITLE_PARTIAL_MIN_RATIO,
) -> List[Candidate]:
    """
    [Role] match_ratio = |keywords contained in title| / |keywords| (case-insensitive substring containment);
           keep ratio >= min_match_ratio, best first.
    [Boundary] Empty keywords -> ratio 0 everywhere -> no candidates (not an error).
    """
    lowered = [(kw, kw.lower()) for kw in keywords if str(kw).strip()]
    if not lowered:
        return []

    started = time.perf_counter()
    scored = []
    for rec in records:
        title = rec.title.lower()
        matched = tuple(kw for kw, low in lowered if low in title)
        ratio = len(matched) / len(lowered)
        if matched and ratio >= min_match_ratio:
            scored.append((ratio, matched, rec))
    scored.sort(key=lambda x: (-x[0], x[2].id))

    out = [
        Candidate.from_record(
            rec,
            source=SOURCE_TITLE_PARTIAL,
            matched_keywords=matched,
            match_ratio=float(ratio),
            score_details={
                "matched_keywords": list(matched),
                "keyword_count": len(lowered),
                "match_ratio": float(ratio),
                "min_match_ratio": float(min_match_ratio),
            },
        )
        for ratio, matched, rec in scored
    ]
    logger.debug(
        "title partial matches",
        extra={
            "stage": SOURCE_TITLE_PARTIAL,
            "hit_count": len(out),
            "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 3),
        },
    )
    return out
