# src/wiki_rag/backend/services/retrieval_service.py

"""
[Role] retrieval_service: host-facing entry point wiring Settings, collaborators, the keyword cache and
       the retrieval pipeline into one `retrieve(text)` call.
[Boundary] No HTTP, no answer generation. Owns the keyword cache lifecycle; collaborators are injected
           and never closed here. Only InvalidQueryError reaches the caller.
[Upstream] answer-generation hosts, scripts and gate tests.
[Downstream] prepare_query -> run_retrieval_pipeline -> RetrievalBundle.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from wiki_rag.backend.kb.protocols import CorpusSnapshotProvider
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.pipelines.retrieval.pipeline import run_retrieval_pipeline
from wiki_rag.backend.pipelines.retrieval.query import prepare_query
from wiki_rag.backend.schemas.retrieval import RetrievalBundle
from wiki_rag.backend.utils.cache import TTLCache
from wiki_rag.backend.utils.errors import InvalidQueryError
from wiki_rag.backend.utils.logging_ import get_logger, hash_text, log_event
from wiki_rag.config import Settings, settings as default_settings


logger = get_logger("services.retrieval")


class RetrievalService:
    """
    [Role] One configured retrieval engine instance (snapshot + indexes + query collaborators).
    [Boundary] The snapshot is read per request through `snapshot`; swap it with `replace_snapshot` to
               publish a refreshed corpus without touching in-flight requests.
    """

    def __init__(
        self,
        *,
        snapshot: CorpusSnapshotProvider,
        term_index: Any = None,
        vector_index: Any = None,
        keyword_extractor: Any = None,
        embedding_provider: Any = None,
        settings: Optional[Settings] = None,
        keyword_cache: Optional[TTLCache[str, List[str]]] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._settings = settings or default_settings
        self._snapshot = snapshot
        self.term_index = term_index
        self.vector_index = vector_index
        self.keyword_extractor = keyword_extractor
        self.embedding_provider = embedding_provider
        if keyword_cache is None:
            keyword_cache = TTLCache(
                ttl_s=self._settings.WIKI_RAG_KEYWORD_CACHE_TTL_S,
                max_size=self._settings.WIKI_RAG_KEYWORD_CACHE_MAX_SIZE,
            )
        self.keyword_cache: TTLCache[str, List[str]] = keyword_cache
        self._config: Dict[str, Any] = dict(config or {})

    @property
    def snapshot(self) -> CorpusSnapshotProvider:
        return self._snapshot

    def replace_snapshot(self, snapshot: CorpusSnapshotProvider) -> None:
        self._snapshot = snapshot

    def _build_config(self, top_k: Optional[int], overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        cfg = dict(self._config)
        for key, value in dict(overrides or {}).items():
            if key == "weights" and isinstance(cfg.get("weights"), Mapping):
                cfg["weights"] = {**cfg["weights"], **dict(value or {})}
            else:
                cfg[key] = value
        if top_k is not None:
            cfg["top_k"] = int(top_k)
        return cfg

    async def retrieve(
        self,
        text: Optional[str],
        *,
        top_k: Optional[int] = None,
        keywords: Optional[Sequence[str]] = None,
        config: Optional[Mapping[str, Any]] = None,
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> RetrievalBundle:
        """
        [Role] Prepare the Query (keywords through the cache, embedding) and run the pipeline.
        [Boundary] Extractor/embedder failures degrade the Query and are reported in record.errors;
                   blank text with no keywords raises InvalidQueryError without touching collaborators.
        """
        started = time.perf_counter()
        ctx = PipelineContext.create(trace_id=trace_id, request_id=request_id)

        query = await prepare_query(
            text,
            keyword_extractor=self.keyword_extractor,
            embedding_provider=self.embedding_provider,
            cache=self.keyword_cache,
            keywords=keywords,
            ctx=ctx,
        )
        prepare_ms = (time.perf_counter() - started) * 1000.0

        try:
            bundle = await run_retrieval_pipeline(
                query=query,
                snapshot=self._snapshot,
                term_index=self.term_index,
                vector_index=self.vector_index,
                config=self._build_config(top_k, config),
                ctx=ctx,
                settings=self._settings,
            )
        except InvalidQueryError:
            log_event(logger, logging.INFO, "retrieval rejected: empty query", context=ctx)
            raise

        bundle.record.timing_ms["prepare"] = prepare_ms
        log_event(
            logger,
            logging.INFO,
            "retrieval served",
            context=ctx,
            fields={
                "query_hash": hash_text(query.text),
                "hit_count": len(bundle.hits),
                "cache": self.keyword_cache.stats.to_dict(),
                "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 3),
            },
        )
        return bundle
