# src/wiki_rag/backend/pipelines/retrieval/types.py
"""
[Role] Candidate: the shared, auditable per-stage result type (title/label/lexical/vector/fusion).
[Boundary] Data only; no retrieval logic beyond small constructors and priority lookups.
[Upstream] every stage module builds Candidates from canonical Records.
[Downstream] fusion merges them; pipeline.py maps them to RetrievalHit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from wiki_rag.backend.schemas.retrieval import CandidateSource, Record
from wiki_rag.backend.utils.constants import STAGE_PRIORITY


def stage_priority(source: str) -> int:
    """Lower is stronger; unknown tags sort last."""
    try:
        return STAGE_PRIORITY.index(source)
    except ValueError:
        return len(STAGE_PRIORITY)


@dataclass(frozen=True)
class Candidate:
    """
    [Role] A Record annotated with match provenance. Stage signals that a stage did not produce stay None.
    [Boundary] composite_score is only set by fusion; score_details must stay JSON-safe.
    """

    record_id: str
    page_id: str
    title: str
    content: str
    source: CandidateSource
    labels: Tuple[str, ...] = ()
    sources: Tuple[CandidateSource, ...] = ()

    title_similarity: Optional[float] = None
    matched_keywords: Tuple[str, ...] = ()
    match_ratio: Optional[float] = None
    label_score: Optional[float] = None
    lexical_rank: Optional[int] = None
    vector_distance: Optional[float] = None

    composite_score: Optional[float] = None
    score_details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Record, *, source: CandidateSource, **signals: Any) -> "Candidate":
        return cls(
            record_id=record.id,
            page_id=record.page_id,
            title=record.title,
            content=record.content,
            labels=tuple(record.labels),
            source=source,
            sources=(source,),
            **signals,
        )
