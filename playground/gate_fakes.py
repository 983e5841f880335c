# playground/gate_fakes.py

"""
[Role] Instrumented collaborator fakes for the gates: call counters plus injectable delays and failures.
[Boundary] Test helpers only; shapes mirror the collaborator protocols in kb/protocols.py.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from wiki_rag.backend.kb.memory import InMemoryCorpus, InMemoryVectorIndex


class FakeTermIndex:
    """Async term index returning a fixed id list as `{id, rank}` rows."""

    def __init__(self, ids: Sequence[str] = (), *, error: Optional[Exception] = None, delay_s: float = 0.0) -> None:
        self.ids = list(ids)
        self.error = error
        self.delay_s = delay_s
        self.calls: List[Tuple[str, int]] = []

    async def search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        self.calls.append((query, limit))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return [{"id": rid, "rank": pos} for pos, rid in enumerate(self.ids[:limit], start=1)]


class SyncTermIndex(FakeTermIndex):
    """Blocking variant; the adapter must push it to a worker thread."""

    def search(self, query: str, limit: int) -> List[Dict[str, Any]]:  # type: ignore[override]
        self.calls.append((query, limit))
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return [{"id": rid, "rank": pos} for pos, rid in enumerate(self.ids[:limit], start=1)]


class FakeVectorIndex:
    """Async wrapper over InMemoryVectorIndex with call counting, delay and failure injection."""

    def __init__(
        self,
        inner: Optional[InMemoryVectorIndex] = None,
        *,
        error: Optional[Exception] = None,
        delay_s: float = 0.0,
    ) -> None:
        self.inner = inner if inner is not None else InMemoryVectorIndex()
        self.error = error
        self.delay_s = delay_s
        self.calls: List[Tuple[Tuple[float, ...], int]] = []

    async def search(self, embedding: Sequence[float], limit: int) -> List[Any]:
        self.calls.append((tuple(embedding), limit))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.inner.search(embedding, limit)


class FakeKeywordExtractor:
    """Whitespace keyword extractor with a stopword list and a call counter."""

    STOPWORDS = {"how", "do", "i", "the", "a", "to", "after", "is", "what"}

    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[str] = []

    def extract(self, text: str) -> List[str]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        words = [w.strip("?.,!").lower() for w in text.split()]
        return [w for w in words if w and w not in self.STOPWORDS]


class FakeEmbeddingProvider:
    """Maps topic words onto the 4-dim corpus axes (membership, accounts, network, release)."""

    AXES = (("withdraw", 0), ("member", 0), ("account", 1), ("vpn", 2), ("release", 3))

    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        vec = [0.0, 0.0, 0.0, 0.0]
        low = text.lower()
        for word, axis in self.AXES:
            if word in low:
                vec[axis] += 1.0
        return vec if any(vec) else [0.25, 0.25, 0.25, 0.25]


class SpySnapshot:
    """CorpusSnapshotProvider wrapper counting records()/get() calls."""

    def __init__(self, inner: InMemoryCorpus) -> None:
        self.inner = inner
        self.records_calls = 0
        self.get_calls = 0

    def records(self):
        self.records_calls += 1
        return self.inner.records()

    def get(self, record_id: str):
        self.get_calls += 1
        return self.inner.get(record_id)
