# src/wiki_rag/backend/pipelines/retrieval/label.py

"""
[Role] Label match stage: coarse metadata scoring so pages surface on title/label overlap even when their
       content wording differs from the query.
[Boundary] In-process heuristic over canonical Records; deliberately independent of the embedding space.
[Upstream] pipeline.py fan-out.
[Downstream] fusion (label_score signal).
"""

from __future__ import annotations

from typing import List, Sequence

from wiki_rag.backend.schemas.retrieval import Record
from wiki_rag.backend.utils.constants import (
    DEFAULT_LABEL_MIN_SCORE,
    LABEL_LABEL_HIT_SCORE,
    LABEL_TITLE_HIT_SCORE,
    SOURCE_LABEL_MATCH,
)
from wiki_rag.backend.utils.logging_ import get_logger

from .types import Candidate


logger = get_logger("retrieval.label")


def search_by_label(
    keywords: Sequence[str],
    records: Sequence[Record],
    min_score: float = DEFAULT_LABEL_MIN_SCORE,
) -> List[Candidate]:
    """
    [Role] score = 0.5 if any keyword is in the title + 0.5 if any keyword is in any label
           (case-insensitive substring); drop below min_score; best first.
    [Boundary] Empty keywords -> [].
    """
    lowered = [(kw, kw.lower()) for kw in keywords if str(kw).strip()]
    if not lowered:
        return []

    scored = []
    for rec in records:
        title = rec.title.lower()
        labels = [label.lower() for label in rec.labels]

        title_hits = [kw for kw, low in lowered if low in title]
        label_hits = [kw for kw, low in lowered if any(low in label for label in labels)]

        score = 0.0
        details: List[str] = []
        if title_hits:
            score += LABEL_TITLE_HIT_SCORE
            details.append("title-keyword")
        if label_hits:
            score += LABEL_LABEL_HIT_SCORE
            details.append("label-keyword")
        if score <= 0.0 or score < min_score:
            continue

        matched = tuple(dict.fromkeys(title_hits + label_hits))  # ordered union
        scored.append((score, matched, details, rec))

    scored.sort(key=lambda x: (-x[0], x[3].id))
    out = [
        Candidate.from_record(
            rec,
            source=SOURCE_LABEL_MATCH,
            label_score=float(score),
            matched_keywords=matched,
            score_details={
                "label_score": float(score),
                "match_details": details,
                "matched_keywords": list(matched),
                "min_score": float(min_score),
            },
        )
        for score, matched, details, rec in scored
    ]
    logger.debug("label matches", extra={"stage": SOURCE_LABEL_MATCH, "hit_count": len(out)})
    return out
