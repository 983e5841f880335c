# src/wiki_rag/backend/pipelines/retrieval/query.py

"""
[Role] Query preparation: clean the raw question, extract keywords and embed it into a Query.
[Boundary] Collaborators are injected. Without a context their failures propagate; with a context they
           are recorded (stage `keywords` / `embedding`) and the Query is built without that part.
           Blank text never reaches the extractor or the embedder.
[Upstream] services/retrieval_service.py, or hosts that build Queries themselves.
[Downstream] run_retrieval_pipeline(query=...).
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from wiki_rag.backend.kb.protocols import call_collaborator
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.schemas.retrieval import Query
from wiki_rag.backend.utils.cache import CachedKeywordExtractor, TTLCache
from wiki_rag.backend.utils.constants import BOM
from wiki_rag.backend.utils.errors import describe_error
from wiki_rag.backend.utils.logging_ import get_logger, hash_text, log_event


logger = get_logger("retrieval.query")

STAGE_KEYWORDS = "keywords"
STAGE_EMBEDDING = "embedding"


def clean_query_text(text: Optional[str]) -> str:
    """Strip BOMs and surrounding whitespace; interior whitespace is collapsed to single spaces."""
    raw = str(text or "").replace(BOM, "")
    return " ".join(raw.split())


async def _extract_keywords(text: str, extractor: Any, cache: Optional[TTLCache[str, List[str]]]) -> List[str]:
    if cache is not None:
        return await CachedKeywordExtractor(extractor, cache).extract(text)
    return [str(k) for k in (await call_collaborator(extractor.extract, text) or [])]


async def _embed(text: str, provider: Any) -> Optional[List[float]]:
    vec = await call_collaborator(provider.embed, text)
    return [float(x) for x in vec] if vec is not None and len(vec) else None


def _record_degraded(ctx: PipelineContext, stage: str, exc: Exception) -> None:
    ctx.record_error(stage, describe_error(exc))
    log_event(logger, logging.WARNING, "query preparation degraded", context=ctx, fields={"stage": stage}, exc_info=exc)


async def prepare_query(
    text: Optional[str],
    *,
    keyword_extractor: Any = None,
    embedding_provider: Any = None,
    cache: Optional[TTLCache[str, List[str]]] = None,
    keywords: Optional[Sequence[str]] = None,
    ctx: Optional[PipelineContext] = None,
) -> Query:
    """
    [Role] Build the immutable Query for one request.
    [Boundary] Explicit `keywords` win over the extractor. With a cache, extraction goes through
               CachedKeywordExtractor (sha256 of the normalized text). No extractor and no explicit
               keywords -> empty keyword list; no embedder -> embedding None.
    """
    cleaned = clean_query_text(text)

    kw: List[str] = [str(k) for k in (keywords or [])]
    embedding: Optional[List[float]] = None
    if cleaned:
        if not kw and keyword_extractor is not None:
            try:
                kw = await _extract_keywords(cleaned, keyword_extractor, cache)
            except Exception as exc:
                if ctx is None:
                    raise
                _record_degraded(ctx, STAGE_KEYWORDS, exc)
        if embedding_provider is not None:
            try:
                embedding = await _embed(cleaned, embedding_provider)
            except Exception as exc:
                if ctx is None:
                    raise
                _record_degraded(ctx, STAGE_EMBEDDING, exc)

    query = Query(text=cleaned, keywords=kw, embedding=embedding)
    log_event(
        logger,
        logging.DEBUG,
        "query prepared",
        context=ctx,
        fields={
            "query_hash": hash_text(cleaned),
            "keyword_count": len(query.keywords),
            "has_embedding": query.embedding is not None,
        },
    )
    return query
