# src/wiki_rag/backend/schemas/retrieval.py

"""
[Role] Retrieval contract layer: canonical Record, the ephemeral Query, and the auditable result
       (RetrievalRecord + RetrievalHit) returned to the answer generator.
[Boundary] No retrieval logic and no collaborator access; shapes and field-level validation only.
[Upstream] kb/records.py normalizes collaborator rows into Record; query.py builds Query.
[Downstream] title/label stages read Record; pipeline.py emits RetrievalBundle.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


CandidateSource = Literal["title-exact", "title-partial", "label-match", "lexical", "vector"]
DedupeGranularity = Literal["page", "chunk"]


class Record(BaseModel):
    """
    [Role] One retrievable chunk of a wiki page, in the single canonical shape every stage consumes.
    [Boundary] Immutable during retrieval; re-ingestion produces a new Record with the same id.
    [Upstream] kb/records.normalize_record (the only constructor collaborators should go through).
    [Downstream] title/label stages scan it; adapters hydrate index hits into it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)  # docstring: `{page_id}-{chunk_index}`, stable across re-ingestion
    page_id: str = Field(..., min_length=1)  # docstring: source page, shared by its chunks
    chunk_index: int = Field(default=0, ge=0)
    title: str = Field(default="")  # docstring: same for all chunks of a page
    content: str = Field(default="")
    labels: Tuple[str, ...] = Field(default_factory=tuple)  # docstring: de-duplicated, sorted
    embedding: Optional[Tuple[float, ...]] = Field(default=None)

    url: Optional[str] = Field(default=None)
    space_key: Optional[str] = Field(default=None)
    last_updated: Optional[datetime] = Field(default=None)

    @field_validator("labels", mode="before")
    @classmethod
    def _canonical_labels(cls, value: Any) -> Tuple[str, ...]:
        items = [str(v).strip() for v in (value or ())]
        return tuple(sorted({v for v in items if v}))


class Query(BaseModel):
    """
    [Role] Ephemeral retrieval input: raw text, ordered keywords, optional precomputed embedding.
    [Boundary] Emptiness is not rejected here; the orchestrator decides (see is_empty).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str = Field(default="")
    keywords: Tuple[str, ...] = Field(default_factory=tuple)
    embedding: Optional[Tuple[float, ...]] = Field(default=None)

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, value: Any) -> Tuple[str, ...]:
        # trim, drop blanks, case-insensitive de-dup keeping the first spelling
        seen: set[str] = set()
        out: List[str] = []
        for raw in value or ():
            kw = str(raw).strip()
            if not kw or kw.lower() in seen:
                continue
            seen.add(kw.lower())
            out.append(kw)
        return tuple(out)

    def is_empty(self) -> bool:
        return not self.text.strip() and not self.keywords


class RetrievalHit(BaseModel):
    """
    [Role] One ranked, fused candidate as handed to the answer generator, with every per-stage signal kept.
    [Boundary] Snapshot of Candidate; composite_score is reproducible from score_details.
    """

    model_config = ConfigDict(extra="forbid")

    rank: int = Field(..., ge=1)  # docstring: 1-based position in the fused list
    record_id: str = Field(...)
    page_id: str = Field(...)
    title: str = Field(default="")
    content: str = Field(default="")
    labels: List[str] = Field(default_factory=list)

    source: CandidateSource = Field(...)  # docstring: highest-priority contributing stage
    sources: List[CandidateSource] = Field(default_factory=list)  # docstring: all contributing stages

    composite_score: float = Field(default=0.0)
    title_similarity: Optional[float] = Field(default=None)
    matched_keywords: List[str] = Field(default_factory=list)
    match_ratio: Optional[float] = Field(default=None)
    label_score: Optional[float] = Field(default=None)
    lexical_rank: Optional[int] = Field(default=None)
    vector_distance: Optional[float] = Field(default=None)
    score_details: Dict[str, Any] = Field(default_factory=dict)


class RetrievalRecord(BaseModel):
    """
    [Role] Replayable snapshot of how one retrieval ran: inputs, config, per-stage counts/errors, timings.
    [Boundary] Describes the run only; hits are carried next to it in RetrievalBundle.
    """

    model_config = ConfigDict(extra="forbid")

    trace_id: str = Field(...)
    request_id: str = Field(...)
    query_text: str = Field(default="")
    keywords: List[str] = Field(default_factory=list)
    has_embedding: bool = Field(default=False)

    top_k: int = Field(..., ge=1)
    early_exit: bool = Field(default=False)  # docstring: title-exact short-circuit taken
    granularity: DedupeGranularity = Field(default="page")
    weights: Dict[str, float] = Field(default_factory=dict)
    exclude_labels: List[str] = Field(default_factory=list)

    stage_counts: Dict[str, int] = Field(default_factory=dict)  # docstring: raw hits per stage before fusion
    errors: Dict[str, str] = Field(default_factory=dict)  # docstring: stage -> degraded reason
    timing_ms: Dict[str, float] = Field(default_factory=dict)


class RetrievalBundle(BaseModel):
    """Record + ranked hits, consumed as one unit by the answer generator."""

    model_config = ConfigDict(extra="forbid")

    record: RetrievalRecord = Field(...)
    hits: List[RetrievalHit] = Field(default_factory=list)
