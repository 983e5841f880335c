# playground/retrieval_gate/test_query_gate.py

"""
[Role] retrieval_gate (query): text cleaning, keyword precedence and failure handling of prepare_query.
"""

from __future__ import annotations

import pytest

from gate_fakes import FakeEmbeddingProvider, FakeKeywordExtractor
from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.pipelines.retrieval.query import clean_query_text, prepare_query


pytestmark = pytest.mark.retrieval_gate


def test_clean_query_text() -> None:
    assert clean_query_text("\ufeff  VPN \n setup\t guide ") == "VPN setup guide"
    assert clean_query_text(None) == ""


@pytest.mark.asyncio
async def test_prepare_query_uses_collaborators() -> None:
    extractor = FakeKeywordExtractor()
    embedder = FakeEmbeddingProvider()
    query = await prepare_query("\ufeffHow do I release?", keyword_extractor=extractor, embedding_provider=embedder)
    assert query.text == "How do I release?"
    assert query.keywords == ("release",)
    assert query.embedding == (0.0, 0.0, 0.0, 1.0)


@pytest.mark.asyncio
async def test_explicit_keywords_win_and_blank_text_skips_collaborators() -> None:
    extractor = FakeKeywordExtractor()
    embedder = FakeEmbeddingProvider()

    query = await prepare_query("vpn", keyword_extractor=extractor, keywords=["network", "Network"])
    assert query.keywords == ("network",)
    assert extractor.calls == []

    blank = await prepare_query("   ", keyword_extractor=extractor, embedding_provider=embedder, keywords=["vpn"])
    assert blank.text == "" and blank.keywords == ("vpn",) and blank.embedding is None
    assert extractor.calls == [] and embedder.calls == []


@pytest.mark.asyncio
async def test_failures_raise_without_context_and_degrade_with_one() -> None:
    broken = FakeEmbeddingProvider(error=ConnectionError("embedder down"))
    with pytest.raises(ConnectionError):
        await prepare_query("vpn", embedding_provider=broken)

    ctx = PipelineContext.create()
    query = await prepare_query(
        "vpn",
        keyword_extractor=FakeKeywordExtractor(error=RuntimeError("quota")),
        embedding_provider=broken,
        ctx=ctx,
    )
    assert query.keywords == () and query.embedding is None
    assert ctx.errors["keywords"] == "RuntimeError: quota"
    assert ctx.errors["embedding"] == "ConnectionError: embedder down"
