# src/wiki_rag/backend/pipelines/retrieval/pipeline.py

"""
[Role] retrieval pipeline: sequence the title/label/lexical/vector stages (title-exact early exit,
       concurrent fan-out with per-stage and request timeouts), fuse, and return an auditable
       RetrievalBundle.
[Boundary] Raises only InvalidQueryError (blank text and no keywords). Stage failures and timeouts
           degrade to "no contribution" and are recorded in RetrievalRecord.errors. No persistence.
[Upstream] services/retrieval_service.py or host code; the Query is prepared upstream (query.py).
[Downstream] the answer generator consumes RetrievalBundle.hits; the record is kept for replay/audit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from wiki_rag.backend.kb.protocols import CorpusSnapshotProvider
from wiki_rag.backend.kb.records import has_excluded_label
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.schemas.retrieval import Query, RetrievalBundle, RetrievalHit, RetrievalRecord
from wiki_rag.backend.utils.constants import (
    DEDUPE_BY_CHUNK,
    DEDUPE_BY_PAGE,
    SOURCE_LABEL_MATCH,
    SOURCE_LEXICAL,
    SOURCE_TITLE_EXACT,
    SOURCE_TITLE_PARTIAL,
    SOURCE_VECTOR,
    TIMING_FANOUT_KEY,
    TIMING_FUSION_KEY,
    TIMING_TOTAL_KEY,
)
from wiki_rag.backend.utils.errors import InvalidQueryError, StageTimeoutError, describe_error
from wiki_rag.backend.utils.logging_ import get_logger, hash_text, log_event
from wiki_rag.config import settings as default_settings

from . import fusion as fusion_mod
from . import keyword as keyword_mod
from . import label as label_mod
from . import title as title_mod
from . import vector as vector_mod
from .fusion import FusionWeights
from .types import Candidate


logger = get_logger("retrieval.pipeline")

StageFactory = Callable[[], Awaitable[List[Candidate]]]


@dataclass(frozen=True)
class _RetrievalConfig:
    """Normalized retrieval config."""

    top_k: int
    title_exact_threshold: float
    title_partial_min_ratio: float
    label_min_score: float
    exclude_labels: Tuple[str, ...]
    lexical_multiplier: int
    vector_multiplier: int
    stage_timeout_s: float
    stage_timeouts: Dict[str, float]
    request_timeout_s: float
    weights: FusionWeights
    granularity: str

    def timeout_for(self, stage: str) -> float:
        return float(self.stage_timeouts.get(stage, self.stage_timeout_s))


def _normalize_config(config: Optional[Mapping[str, Any]], base: Any = None) -> _RetrievalConfig:
    """
    [Role] Overlay a per-call config mapping on the Settings defaults and coerce types.
    [Boundary] Shape/type checks only (ValueError on nonsense such as top_k < 1); no policy.
    [Upstream] run_retrieval_pipeline.
    """
    s = base if base is not None else default_settings
    cfg = dict(config or {})

    def _pick(key: str, default: Any) -> Any:
        v = cfg.get(key)
        return default if v is None else v

    top_k = int(_pick("top_k", s.WIKI_RAG_TOP_K))
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")

    granularity = str(_pick("granularity", s.WIKI_RAG_DEDUPE_GRANULARITY)).strip().lower()
    if granularity not in (DEDUPE_BY_PAGE, DEDUPE_BY_CHUNK):
        raise ValueError(f"granularity must be 'page' or 'chunk', got {granularity!r}")

    exclude = _pick("exclude_labels", s.WIKI_RAG_EXCLUDE_LABELS)
    if isinstance(exclude, str):
        exclude = exclude.split(",")
    exclude_labels = tuple(dict.fromkeys(str(x).strip() for x in exclude if str(x).strip()))

    stage_timeouts = {str(k): float(v) for k, v in dict(cfg.get("stage_timeouts") or {}).items()}

    return _RetrievalConfig(
        top_k=top_k,
        title_exact_threshold=float(_pick("title_exact_threshold", s.WIKI_RAG_TITLE_EXACT_THRESHOLD)),
        title_partial_min_ratio=float(_pick("title_partial_min_ratio", s.WIKI_RAG_TITLE_PARTIAL_MIN_RATIO)),
        label_min_score=float(_pick("label_min_score", s.WIKI_RAG_LABEL_MIN_SCORE)),
        exclude_labels=exclude_labels,
        lexical_multiplier=int(_pick("lexical_multiplier", s.WIKI_RAG_LEXICAL_MULTIPLIER)),
        vector_multiplier=int(_pick("vector_multiplier", s.WIKI_RAG_VECTOR_MULTIPLIER)),
        stage_timeout_s=float(_pick("stage_timeout_s", s.WIKI_RAG_STAGE_TIMEOUT_S)),
        stage_timeouts=stage_timeouts,
        request_timeout_s=float(_pick("request_timeout_s", s.WIKI_RAG_REQUEST_TIMEOUT_S)),
        weights=FusionWeights.from_settings(s).with_overrides(cfg.get("weights")),
        granularity=granularity,
    )


def _candidate_to_schema_hit(candidate: Candidate, *, rank: int) -> RetrievalHit:
    """Candidate -> RetrievalHit (bundle output)."""
    return RetrievalHit(
        rank=int(rank),
        record_id=candidate.record_id,
        page_id=candidate.page_id,
        title=candidate.title,
        content=candidate.content,
        labels=list(candidate.labels),
        source=candidate.source,
        sources=list(candidate.sources),
        composite_score=float(candidate.composite_score or 0.0),
        title_similarity=candidate.title_similarity,
        matched_keywords=list(candidate.matched_keywords),
        match_ratio=candidate.match_ratio,
        label_score=candidate.label_score,
        lexical_rank=candidate.lexical_rank,
        vector_distance=candidate.vector_distance,
        score_details=dict(candidate.score_details or {}),
    )


async def _run_stage(name: str, factory: StageFactory, *, timeout_s: float, ctx: PipelineContext) -> List[Candidate]:
    """
    [Role] Run one fanned-out stage under its own timeout.
    [Boundary] Timeouts and exceptions become [] plus an entry in ctx.errors. Cancellation (request
               deadline) is not caught here; the join records it.
    """
    try:
        with ctx.timing.stage(name):
            return await asyncio.wait_for(factory(), timeout=timeout_s)
    except asyncio.TimeoutError:
        err = StageTimeoutError(stage=name, timeout_s=timeout_s)
        ctx.record_error(name, describe_error(err))
        log_event(logger, logging.WARNING, "stage timed out", context=ctx, fields={"stage": name, "timeout_s": timeout_s})
        return []
    except Exception as exc:
        ctx.record_error(name, describe_error(exc))
        log_event(logger, logging.WARNING, "stage failed", context=ctx, fields={"stage": name}, exc_info=exc)
        return []


async def _fan_out(
    stages: Dict[str, StageFactory],
    *,
    cfg: _RetrievalConfig,
    ctx: PipelineContext,
    deadline_s: float,
) -> Dict[str, List[Candidate]]:
    """
    [Role] Start every stage concurrently and join them behind the request deadline.
    [Boundary] Stages still running at the deadline are cancelled, recorded and contribute [].
    """
    tasks = {
        name: asyncio.create_task(
            _run_stage(name, factory, timeout_s=cfg.timeout_for(name), ctx=ctx),
            name=f"retrieval:{name}",
        )
        for name, factory in stages.items()
    }
    with ctx.timing.stage(TIMING_FANOUT_KEY):
        _done, pending = await asyncio.wait(list(tasks.values()), timeout=max(deadline_s, 0.0))

    results: Dict[str, List[Candidate]] = {}
    for name, task in tasks.items():
        if task in pending:
            task.cancel()
            err = StageTimeoutError(stage=name, timeout_s=cfg.request_timeout_s)
            ctx.record_error(name, describe_error(err))
            log_event(logger, logging.WARNING, "stage cut by request deadline", context=ctx, fields={"stage": name})
            results[name] = []
        else:
            results[name] = task.result()
    if pending:
        # let cancelled stages unwind before the bundle is built
        await asyncio.gather(*pending, return_exceptions=True)
    return results


async def run_retrieval_pipeline(
    *,
    query: Query,
    snapshot: CorpusSnapshotProvider,
    term_index: Any = None,
    vector_index: Any = None,
    config: Optional[Mapping[str, Any]] = None,
    ctx: Optional[PipelineContext] = None,
    settings: Any = None,
) -> RetrievalBundle:
    """
    [Role] Start -> Title-Exact -> (EarlyExit | FanOut -> Join) -> Fuse -> Done.
    [Boundary] Invalid query -> InvalidQueryError before any stage or collaborator call. A title-exact
               hit returns the fused exact matches only; no other stage or collaborator runs.
    [Upstream] RetrievalService.retrieve, or hosts/tests with their own snapshot and indexes.
    [Downstream] RetrievalBundle (hits ranked 1..n, record with counts/errors/timings).
    """
    if query.is_empty():
        raise InvalidQueryError(detail={"keyword_count": len(query.keywords)})

    cfg = _normalize_config(config, base=settings)
    ctx = ctx or PipelineContext.create()
    ctx.timing.reset()
    loop = asyncio.get_running_loop()
    started = loop.time()

    text = query.text.strip()
    keywords = list(query.keywords)
    records = [r for r in snapshot.records() if not has_excluded_label(r, cfg.exclude_labels)]
    lookup = snapshot.get

    stage_results: Dict[str, List[Candidate]] = {}
    if text:
        with ctx.timing.stage(SOURCE_TITLE_EXACT):
            stage_results[SOURCE_TITLE_EXACT] = title_mod.search_title_exact(text, records, cfg.title_exact_threshold)
    else:
        ctx.timing.add_ms(SOURCE_TITLE_EXACT, 0.0, accumulate=False)
        stage_results[SOURCE_TITLE_EXACT] = []

    early_exit = bool(stage_results[SOURCE_TITLE_EXACT])
    if not early_exit:
        stages: Dict[str, StageFactory] = {
            SOURCE_TITLE_PARTIAL: lambda: asyncio.to_thread(
                title_mod.search_title_partial, keywords, records, cfg.title_partial_min_ratio
            ),
            SOURCE_LABEL_MATCH: lambda: asyncio.to_thread(
                label_mod.search_by_label, keywords, records, cfg.label_min_score
            ),
            SOURCE_LEXICAL: lambda: keyword_mod.lexical_recall(
                term_index,
                text,
                cfg.top_k,
                lookup,
                multiplier=cfg.lexical_multiplier,
                exclude_labels=cfg.exclude_labels,
                ctx=ctx,
            ),
            SOURCE_VECTOR: lambda: vector_mod.vector_recall(
                vector_index,
                query.embedding,
                cfg.top_k,
                lookup,
                multiplier=cfg.vector_multiplier,
                exclude_labels=cfg.exclude_labels,
                ctx=ctx,
            ),
        }
        remaining = cfg.request_timeout_s - (loop.time() - started)
        stage_results.update(await _fan_out(stages, cfg=cfg, ctx=ctx, deadline_s=remaining))

    with ctx.timing.stage(TIMING_FUSION_KEY):
        fused = fusion_mod.fuse_candidates(stage_results, cfg.top_k, cfg.weights, cfg.granularity)

    record = RetrievalRecord(
        trace_id=ctx.trace_id,
        request_id=ctx.request_id,
        query_text=text,
        keywords=keywords,
        has_embedding=bool(query.embedding),
        top_k=cfg.top_k,
        early_exit=early_exit,
        granularity=cfg.granularity,
        weights=cfg.weights.to_dict(),
        exclude_labels=list(cfg.exclude_labels),
        stage_counts=fusion_mod.count_by_stage(stage_results),
        errors=dict(ctx.errors),
        timing_ms=ctx.timing_ms(include_total=True, total_key=TIMING_TOTAL_KEY),
    )
    hits = [_candidate_to_schema_hit(c, rank=i) for i, c in enumerate(fused, start=1)]

    log_event(
        logger,
        logging.INFO,
        "retrieval done",
        context=ctx,
        fields={
            "query_hash": hash_text(text),
            "keyword_count": len(keywords),
            "early_exit": early_exit,
            "hit_count": len(hits),
            "stage_counts": record.stage_counts,
            "degraded_stages": sorted(record.errors),
            "elapsed_ms": record.timing_ms.get(TIMING_TOTAL_KEY),
        },
    )
    return RetrievalBundle(record=record, hits=hits)
