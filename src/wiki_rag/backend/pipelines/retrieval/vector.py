# src/wiki_rag/backend/pipelines/retrieval/vector.py

"""
[Role] Vector recall: query an external nearest-neighbour index with the query embedding and map its
       rows onto Candidates tagged `vector` carrying the raw distance.
[Boundary] Adapter only. Distances are passed through untouched (lower = closer); scale normalization
           belongs to fusion. Collaborator failures degrade to [] and are recorded on the context.
[Upstream] pipeline.py fan-out (wrapped in the per-stage timeout).
[Downstream] fusion (vector_distance signal).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Optional, Sequence

from wiki_rag.backend.kb.protocols import call_collaborator, normalize_vector_hits
from wiki_rag.backend.kb.records import has_excluded_label
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.schemas.retrieval import Record
from wiki_rag.backend.utils.constants import DEFAULT_VECTOR_MULTIPLIER, SOURCE_VECTOR
from wiki_rag.backend.utils.errors import ExternalDependencyError, describe_error
from wiki_rag.backend.utils.logging_ import get_logger, log_event

from .types import Candidate


logger = get_logger("retrieval.vector")


async def vector_recall(
    vector_index: Any,
    embedding: Optional[Sequence[float]],
    top_k: int,
    lookup: Callable[[str], Optional[Record]],
    *,
    multiplier: int = DEFAULT_VECTOR_MULTIPLIER,
    exclude_labels: Iterable[str] = (),
    ctx: Optional[PipelineContext] = None,
) -> List[Candidate]:
    """
    [Role] Request top_k * multiplier neighbours and hydrate them through the snapshot lookup.
    [Boundary] Missing/empty embedding, non-positive top_k or a missing index -> [] without a call.
               Neighbour order from the index is kept; duplicate ids keep their first (closest) row.
    """
    if vector_index is None or not embedding or int(top_k) <= 0:
        return []

    limit = int(top_k) * max(int(multiplier), 1)
    try:
        rows = await call_collaborator(vector_index.search, list(embedding), limit)
        hits = normalize_vector_hits(rows)
    except Exception as exc:
        err = ExternalDependencyError(
            error_code="RETRIEVAL__VECTOR_UNAVAILABLE",
            message=f"vector index search failed: {exc.__class__.__name__}: {exc}",
            cause=exc,
        )
        log_event(
            logger,
            logging.WARNING,
            "vector stage degraded",
            context=ctx,
            fields={"stage": SOURCE_VECTOR, "limit": limit, "dim": len(embedding)},
            exc_info=exc,
        )
        if ctx is not None:
            ctx.record_error(SOURCE_VECTOR, describe_error(err))
        return []

    out: List[Candidate] = []
    seen = set()
    dropped = 0
    for pos, hit in enumerate(hits, start=1):
        if hit.id in seen:
            continue
        seen.add(hit.id)
        rec = lookup(hit.id)
        if rec is None or has_excluded_label(rec, exclude_labels):
            dropped += 1
            continue
        out.append(
            Candidate.from_record(
                rec,
                source=SOURCE_VECTOR,
                vector_distance=float(hit.distance),
                score_details={"vector_distance": float(hit.distance), "raw_position": pos, "limit": limit},
            )
        )

    log_event(
        logger,
        logging.DEBUG,
        "vector recall",
        context=ctx,
        fields={"stage": SOURCE_VECTOR, "raw_count": len(hits), "hit_count": len(out), "dropped": dropped},
    )
    return out
