# playground/retrieval_gate/test_pipeline_gate.py

"""
[Role] retrieval_gate (pipeline): early exit, fan-out/join, degradation under timeouts and failures,
       invalid-query rejection and determinism of the end-to-end ranked list.
[Boundary] run_retrieval_pipeline over the in-memory corpus with instrumented fakes.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List

import pytest

from gate_fakes import FakeTermIndex, FakeVectorIndex, SpySnapshot, SyncTermIndex
from wiki_rag.backend.kb.memory import InMemoryCorpus, InMemoryVectorIndex
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.pipelines.retrieval import label as label_mod
from wiki_rag.backend.pipelines.retrieval import title as title_mod
from wiki_rag.backend.pipelines.retrieval.pipeline import _normalize_config, run_retrieval_pipeline
from wiki_rag.backend.schemas.retrieval import Query
from wiki_rag.backend.utils.errors import InvalidQueryError


pytestmark = pytest.mark.retrieval_gate


def _count_calls(monkeypatch: pytest.MonkeyPatch, module: Any, name: str) -> List[int]:
    calls: List[int] = []
    original = getattr(module, name)

    def _spy(*args: Any, **kwargs: Any) -> Any:
        calls.append(1)
        return original(*args, **kwargs)

    monkeypatch.setattr(module, name, _spy)
    return calls


@pytest.mark.asyncio
async def test_exact_title_short_circuits_every_other_stage(
    monkeypatch: pytest.MonkeyPatch,
    corpus: InMemoryCorpus,
    memory_vector_index: InMemoryVectorIndex,
    retrieval_config: Dict[str, Any],
) -> None:
    term = FakeTermIndex(["705000002-0"])
    vec = FakeVectorIndex(memory_vector_index)
    label_calls = _count_calls(monkeypatch, label_mod, "search_by_label")
    partial_calls = _count_calls(monkeypatch, title_mod, "search_title_partial")

    bundle = await run_retrieval_pipeline(
        query=Query(text="Member Withdrawal Feature", keywords=["withdrawal"], embedding=[1.0, 0.0, 0.0, 0.0]),
        snapshot=corpus,
        term_index=term,
        vector_index=vec,
        config=retrieval_config,
    )

    first = bundle.hits[0]
    assert first.source == "title-exact"
    assert first.title_similarity is not None and first.title_similarity >= 0.85
    assert first.page_id == "704643076"
    assert first.composite_score == pytest.approx(1.0)
    assert len(bundle.hits) == 1  # both chunks collapse into the page
    assert bundle.record.early_exit is True
    assert term.calls == [] and vec.calls == []
    assert label_calls == [] and partial_calls == []
    assert bundle.record.stage_counts["title-exact"] == 2
    assert bundle.record.stage_counts["lexical"] == 0


@pytest.mark.asyncio
async def test_partial_keyword_match_scenario(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    bundle = await run_retrieval_pipeline(
        query=Query(text="how to come back after withdrawal", keywords=["withdrawal", "re-registration", "process"]),
        snapshot=corpus,
        term_index=FakeTermIndex([]),
        vector_index=FakeVectorIndex(),
        config=retrieval_config,
    )
    assert bundle.record.early_exit is False
    hit = next(h for h in bundle.hits if h.page_id == "704643100")
    assert "title-partial" in hit.sources
    assert hit.source == "title-partial"
    assert hit.match_ratio == pytest.approx(0.67, abs=0.01)
    assert bundle.hits[0].page_id == "704643100"


@pytest.mark.asyncio
async def test_label_only_surfacing_scenario(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    bundle = await run_retrieval_pipeline(
        query=Query(text="membership", keywords=["membership"]),
        snapshot=corpus,
        config=retrieval_config,
    )
    hit = next(h for h in bundle.hits if h.page_id == "705000001")
    assert hit.source == "label-match"
    assert hit.label_score is not None and hit.label_score >= 0.3
    assert hit.rank >= 1


@pytest.mark.asyncio
async def test_empty_query_is_rejected_before_any_stage(corpus: InMemoryCorpus) -> None:
    snapshot = SpySnapshot(corpus)
    term = FakeTermIndex(["705000002-0"])
    vec = FakeVectorIndex()
    with pytest.raises(InvalidQueryError) as excinfo:
        await run_retrieval_pipeline(query=Query(text="", keywords=[]), snapshot=snapshot, term_index=term, vector_index=vec)
    assert excinfo.value.error_code == "RETRIEVAL__INVALID_QUERY"
    assert snapshot.records_calls == 0 and snapshot.get_calls == 0
    assert term.calls == [] and vec.calls == []

    with pytest.raises(InvalidQueryError):
        await run_retrieval_pipeline(query=Query(text="   ", keywords=["  "]), snapshot=snapshot)


@pytest.mark.asyncio
async def test_keywords_without_text_skip_title_exact_and_lexical(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    term = FakeTermIndex(["705000002-0"])
    bundle = await run_retrieval_pipeline(
        query=Query(text="", keywords=["vpn"]),
        snapshot=corpus,
        term_index=term,
        config=retrieval_config,
    )
    assert term.calls == []
    assert bundle.record.timing_ms["title-exact"] == 0.0
    assert [h.page_id for h in bundle.hits][:1] == ["705000002"]


@pytest.mark.asyncio
async def test_vector_stage_timeout_degrades_gracefully(
    corpus: InMemoryCorpus,
    memory_vector_index: InMemoryVectorIndex,
    retrieval_config: Dict[str, Any],
) -> None:
    vec = FakeVectorIndex(memory_vector_index, delay_s=5.0)
    config = dict(retrieval_config, stage_timeouts={"vector": 0.05})
    started = time.perf_counter()
    bundle = await run_retrieval_pipeline(
        query=Query(text="withdrawal", keywords=["withdrawal"], embedding=[1.0, 0.0, 0.0, 0.0]),
        snapshot=corpus,
        term_index=FakeTermIndex(["704643100-0"]),
        vector_index=vec,
        config=config,
    )
    elapsed = time.perf_counter() - started

    assert elapsed < retrieval_config["request_timeout_s"]
    assert len(vec.calls) == 1
    assert bundle.hits
    assert "RETRIEVAL__STAGE_TIMEOUT" in bundle.record.errors["vector"]
    assert bundle.record.stage_counts["vector"] == 0
    assert all("vector" not in h.sources for h in bundle.hits)


@pytest.mark.asyncio
async def test_request_deadline_returns_completed_stages(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    config = dict(retrieval_config, stage_timeout_s=30.0, request_timeout_s=0.2)
    started = time.perf_counter()
    bundle = await run_retrieval_pipeline(
        query=Query(text="withdrawal", keywords=["withdrawal"], embedding=[1.0, 0.0, 0.0, 0.0]),
        snapshot=corpus,
        term_index=FakeTermIndex(["704643100-0"], delay_s=10.0),
        vector_index=FakeVectorIndex(delay_s=10.0),
        config=config,
    )
    assert time.perf_counter() - started < 2.0
    assert set(bundle.record.errors) == {"lexical", "vector"}
    assert bundle.hits  # title-partial / label still contributed
    assert {h.source for h in bundle.hits} <= {"title-partial", "label-match"}


@pytest.mark.asyncio
async def test_collaborator_failure_never_aborts(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    bundle = await run_retrieval_pipeline(
        query=Query(text="vpn outage", keywords=["vpn"], embedding=[0.0, 0.0, 1.0, 0.0]),
        snapshot=corpus,
        term_index=SyncTermIndex(error=RuntimeError("fts locked")),
        vector_index=FakeVectorIndex(error=RuntimeError("ann down")),
        config=retrieval_config,
    )
    assert set(bundle.record.errors) == {"lexical", "vector"}
    assert [h.page_id for h in bundle.hits][:1] == ["705000002"]


@pytest.mark.asyncio
async def test_nothing_matches_returns_empty_list(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    bundle = await run_retrieval_pipeline(
        query=Query(text="zzz qqq", keywords=["zzz"]),
        snapshot=corpus,
        term_index=FakeTermIndex([]),
        config=retrieval_config,
    )
    assert bundle.hits == []
    assert bundle.record.errors == {}


@pytest.mark.asyncio
async def test_ranked_list_is_deterministic(
    corpus: InMemoryCorpus,
    memory_vector_index: InMemoryVectorIndex,
    retrieval_config: Dict[str, Any],
) -> None:
    async def _run() -> List[Any]:
        bundle = await run_retrieval_pipeline(
            query=Query(text="withdrawal account", keywords=["withdrawal", "account"], embedding=[0.5, 0.5, 0.0, 0.0]),
            snapshot=corpus,
            term_index=FakeTermIndex(["704643100-0", "705000001-0", "704643076-0"]),
            vector_index=FakeVectorIndex(memory_vector_index),
            config=retrieval_config,
        )
        return [(h.rank, h.record_id, h.composite_score, tuple(h.sources)) for h in bundle.hits]

    first = await _run()
    second = await _run()
    assert first == second
    assert [r for r, *_ in first] == list(range(1, len(first) + 1))
    pages = [rid.rpartition("-")[0] for _, rid, _, _ in first]
    assert len(pages) == len(set(pages))
    assert len(first) <= retrieval_config["top_k"]


@pytest.mark.asyncio
async def test_exclude_labels_apply_to_every_stage(
    corpus: InMemoryCorpus,
    memory_vector_index: InMemoryVectorIndex,
    retrieval_config: Dict[str, Any],
) -> None:
    config = dict(retrieval_config, exclude_labels=["archive"])
    bundle = await run_retrieval_pipeline(
        query=Query(text="withdrawal flow", keywords=["withdrawal", "sync"], embedding=[0.0, 0.0, 0.5, 0.5]),
        snapshot=corpus,
        term_index=FakeTermIndex(["705000003-0", "704643100-0"]),
        vector_index=FakeVectorIndex(memory_vector_index),
        config=config,
    )
    assert "705000003" not in {h.page_id for h in bundle.hits}
    assert bundle.record.exclude_labels == ["archive"]
    lexical = next(h for h in bundle.hits if h.page_id == "704643100")
    assert lexical.lexical_rank == 1


@pytest.mark.asyncio
async def test_chunk_granularity_and_context(corpus: InMemoryCorpus, retrieval_config: Dict[str, Any]) -> None:
    ctx = PipelineContext.create(trace_id="trace-1", request_id="req-1")
    bundle = await run_retrieval_pipeline(
        query=Query(text="Member Withdrawal Feature"),
        snapshot=corpus,
        config=dict(retrieval_config, granularity="chunk"),
        ctx=ctx,
    )
    assert [h.record_id for h in bundle.hits] == ["704643076-0", "704643076-1"]
    assert bundle.record.trace_id == "trace-1" and bundle.record.request_id == "req-1"
    assert bundle.record.granularity == "chunk"
    assert "total" in bundle.record.timing_ms and "fusion" in bundle.record.timing_ms


def test_normalize_config_validates_shape() -> None:
    cfg = _normalize_config({"top_k": "3", "exclude_labels": "archive, meeting-notes", "weights": {"label": 0.5}})
    assert cfg.top_k == 3
    assert cfg.exclude_labels == ("archive", "meeting-notes")
    assert cfg.weights.label == 0.5
    assert cfg.timeout_for("vector") == cfg.stage_timeout_s
    with pytest.raises(ValueError):
        _normalize_config({"top_k": 0})
    with pytest.raises(ValueError):
        _normalize_config({"granularity": "section"})
