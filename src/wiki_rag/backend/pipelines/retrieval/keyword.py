# src/wiki_rag/backend/pipelines/retrieval/keyword.py

"""
[Role] Lexical recall: query an external term index (BM25-like) and map its rows onto Candidates
       tagged `lexical` with a 1-based lexical_rank.
[Boundary] Adapter only. Raw index scores are kept for audit but never used for ranking; collaborator
           failures degrade to [] and are recorded on the context, never raised.
[Upstream] pipeline.py fan-out (wrapped in the per-stage timeout).
[Downstream] fusion (lexical_rank signal).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Optional, Tuple

from wiki_rag.backend.kb.protocols import TermHit, call_collaborator, normalize_term_hits
from wiki_rag.backend.kb.records import has_excluded_label
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.schemas.retrieval import Record
from wiki_rag.backend.utils.constants import DEFAULT_LEXICAL_MULTIPLIER, SOURCE_LEXICAL
from wiki_rag.backend.utils.errors import ExternalDependencyError, describe_error
from wiki_rag.backend.utils.logging_ import get_logger, hash_text, log_event

from .types import Candidate


logger = get_logger("retrieval.lexical")

RecordLookup = Callable[[str], Optional[Record]]


def _normalize_query(query: str) -> str:
    raw = str(query or "")
    return " ".join(raw.strip().split())  # docstring: collapse runs of whitespace


def _rank_order(hits: List[TermHit]) -> List[Tuple[int, TermHit]]:
    """
    (raw_position, hit) pairs ordered by the index's own rank; rows without a rank follow the ranked
    ones, and list order breaks ties (stable).
    """
    indexed = list(enumerate(hits, start=1))
    return sorted(indexed, key=lambda item: (item[1].rank is None, item[1].rank or 0.0, item[0]))


async def lexical_recall(
    term_index: Any,
    query_text: str,
    top_k: int,
    lookup: RecordLookup,
    *,
    multiplier: int = DEFAULT_LEXICAL_MULTIPLIER,
    exclude_labels: Iterable[str] = (),
    ctx: Optional[PipelineContext] = None,
) -> List[Candidate]:
    """
    [Role] Request top_k * multiplier hits for the raw query text, hydrate them through the snapshot
           lookup and assign contiguous lexical_rank 1..n in the index's rank order (list order when a
           row carries no rank or ranks tie).
    [Boundary] Blank query, non-positive top_k or a missing index -> [] without calling anything.
               Unknown ids and records carrying an excluded label are dropped (counted in score_details).
    [Upstream] pipeline.py; `term_index.search(query, limit)` may be sync or async.
    [Downstream] fusion.fuse_candidates.
    """
    normalized = _normalize_query(query_text)
    if term_index is None or not normalized or int(top_k) <= 0:
        return []

    limit = int(top_k) * max(int(multiplier), 1)
    try:
        rows = await call_collaborator(term_index.search, normalized, limit)
        hits = normalize_term_hits(rows)
    except Exception as exc:
        err = ExternalDependencyError(
            error_code="RETRIEVAL__LEXICAL_UNAVAILABLE",
            message=f"term index search failed: {exc.__class__.__name__}: {exc}",
            cause=exc,
        )
        log_event(
            logger,
            logging.WARNING,
            "lexical stage degraded",
            context=ctx,
            fields={"stage": SOURCE_LEXICAL, "limit": limit, "query_hash": hash_text(normalized)},
            exc_info=exc,
        )
        if ctx is not None:
            ctx.record_error(SOURCE_LEXICAL, describe_error(err))
        return []

    out: List[Candidate] = []
    seen = set()
    dropped_unknown = 0
    dropped_excluded = 0
    for raw_pos, hit in _rank_order(hits):
        if hit.id in seen:
            continue
        seen.add(hit.id)
        rec = lookup(hit.id)
        if rec is None:
            dropped_unknown += 1
            continue
        if has_excluded_label(rec, exclude_labels):
            dropped_excluded += 1
            continue
        rank = len(out) + 1
        out.append(
            Candidate.from_record(
                rec,
                source=SOURCE_LEXICAL,
                lexical_rank=rank,
                score_details={
                    "lexical_rank": rank,
                    "raw_position": raw_pos,
                    "raw_rank": hit.rank,
                    "raw_score": hit.score,
                    "limit": limit,
                },
            )
        )

    log_event(
        logger,
        logging.DEBUG,
        "lexical recall",
        context=ctx,
        fields={
            "stage": SOURCE_LEXICAL,
            "raw_count": len(hits),
            "hit_count": len(out),
            "dropped_unknown": dropped_unknown,
            "dropped_excluded": dropped_excluded,
        },
    )
    return out
