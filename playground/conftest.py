# playground/conftest.py

"""
[Role] Shared gate fixtures: a small wiki corpus, the in-memory collaborators and a pinned retrieval config.
       Instrumented fakes live in gate_fakes.py.
[Boundary] No network and no external services; the SQLite FTS gate builds its own database under tmp_path.
[Downstream] every *_gate test module.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from wiki_rag.backend.kb.memory import InMemoryCorpus, InMemoryVectorIndex


WIKI_ROWS: List[Dict[str, Any]] = [
    {
        "id": "704643076-0",
        "page_id": "704643076",
        "title": "Member Withdrawal Feature",
        "content": "Members can withdraw from the service on the account page. Personal data is erased after 30 days.",
        "labels": ["membership", "feature-spec"],
        "embedding": [1.0, 0.0, 0.0, 0.0],
    },
    {
        "id": "704643076-1",
        "page_id": "704643076",
        "title": "Member Withdrawal Feature",
        "content": "A withdrawal cannot be undone once the grace period has passed.",
        "labels": ["membership", "feature-spec"],
        "embedding": [0.9, 0.1, 0.0, 0.0],
    },
    {
        "id": "704643100-0",
        "pageId": "704643100",
        "title": "Re-registration After Withdrawal",
        "content": "A former member may sign up again after 30 days with a new account.",
        "labels": '["membership"]',
        "embedding": [0.7, 0.7, 0.0, 0.0],
    },
    {
        "id": "705000001-0",
        "page_id": "705000001",
        "title": "Account Lifecycle Policy",
        "content": "Dormant accounts are reviewed quarterly by the operations team.",
        "labels": "membership",
        "embedding": [0.0, 1.0, 0.0, 0.0],
    },
    {
        "id": "705000002-0",
        "page_id": "705000002",
        "title": "VPN Setup Guide",
        "content": "Install the client and import the corporate profile.",
        "labels": ["it", "network"],
        "embedding": [0.0, 0.0, 1.0, 0.0],
    },
    {
        "id": "705000003-0",
        "page_id": "705000003",
        "title": "Weekly Sync 2023-01-10",
        "content": "Discussed the withdrawal flow rollout and the VPN outage.",
        "labels": ["meeting-notes", "archive"],
        "embedding": [0.0, 0.0, 0.5, 0.5],
    },
    {
        "id": "705000004-0",
        "pageId": 705000004,
        "title": "\ufeffRelease Process",
        "content": "Tag, build and deploy through the release pipeline.",
        "labels": "devops, release",
        "embedding": [0.0, 0.0, 0.0, 1.0],
    },
]


@pytest.fixture
def wiki_rows() -> List[Dict[str, Any]]:
    return [dict(r) for r in WIKI_ROWS]


@pytest.fixture
def corpus(wiki_rows: List[Dict[str, Any]]) -> InMemoryCorpus:
    return InMemoryCorpus(wiki_rows)


@pytest.fixture
def memory_vector_index(corpus: InMemoryCorpus) -> InMemoryVectorIndex:
    return InMemoryVectorIndex.from_records(corpus.records())


@pytest.fixture
def retrieval_config() -> Dict[str, Any]:
    """Explicit config so local WIKI_RAG_* env values never leak into gate expectations."""
    return {
        "top_k": 5,
        "exclude_labels": [],
        "stage_timeout_s": 1.0,
        "request_timeout_s": 3.0,
        "granularity": "page",
        "title_exact_threshold": 0.85,
        "title_partial_min_ratio": 0.33,
        "label_min_score": 0.3,
        "lexical_multiplier": 3,
        "vector_multiplier": 5,
        "weights": {"title_exact": 1.0, "title_partial": 0.4, "vector": 0.3, "lexical": 0.3, "label": 0.2},
    }
