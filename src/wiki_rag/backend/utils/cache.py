# src/wiki_rag/backend/utils/cache.py

"""
[Role] Explicit in-process cache (key -> value, TTL, LRU eviction, hit/miss stats) and the keyword-extraction
       wrapper that uses it.
[Boundary] No module-level singletons, no disk persistence, no background sweeper; the host application owns
           the cache instance and its lifecycle.
[Upstream] services/retrieval_service.py builds one TTLCache and injects it; tests inject a fake clock.
[Downstream] pipelines/retrieval/query.py calls CachedKeywordExtractor.extract when preparing a Query.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from wiki_rag.backend.utils.logging_ import get_logger, hash_text


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

logger = get_logger("cache")


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        return (self.hits / total) if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }


class TTLCache(Generic[K, V]):
    """
    [Role] Bounded mapping whose entries expire `ttl_s` seconds after they were written.
    [Boundary] LRU eviction once `max_size` is reached; expired entries are dropped lazily on access
               or via purge_expired(). Thread-safe for the get/set/delete surface.
    """

    def __init__(
        self,
        *,
        ttl_s: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if float(ttl_s) <= 0:
            raise ValueError("ttl_s must be > 0")
        if int(max_size) <= 0:
            raise ValueError("max_size must be > 0")
        self.ttl_s = float(ttl_s)
        self.max_size = int(max_size)
        self._clock = clock
        self._data: "OrderedDict[K, Tuple[float, V]]" = OrderedDict()  # key -> (expires_at, value)
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            item = self._data.get(key)  # type: ignore[arg-type]
            return item is not None and item[0] > self._clock()

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                self.stats.misses += 1
                return default
            expires_at, value = item
            if expires_at <= self._clock():
                del self._data[key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return default
            self._data.move_to_end(key)  # most recently used
            self.stats.hits += 1
            return value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._data:
                del self._data[key]
            self._data[key] = (self._clock() + self.ttl_s, value)
            while len(self._data) > self.max_size:
                self._data.popitem(last=False)
                self.stats.evictions += 1

    def delete(self, key: K) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Drop every expired entry now; returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (expires_at, _) in self._data.items() if expires_at <= now]
            for k in stale:
                del self._data[k]
            self.stats.expirations += len(stale)
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


def keyword_cache_key(query_text: str) -> str:
    """sha256 of the trimmed, lower-cased query text."""
    return hash_text(str(query_text or "").strip().lower()) or ""


class CachedKeywordExtractor:
    """
    [Role] KeywordExtractor decorator memoizing extract(text) results in an injected TTLCache.
    [Boundary] Failures of the wrapped extractor propagate and are never cached; sync extractors run
               in a worker thread.
    """

    def __init__(self, extractor: Any, cache: TTLCache[str, List[str]]) -> None:
        self._extractor = extractor
        self._cache = cache

    @property
    def cache(self) -> TTLCache[str, List[str]]:
        return self._cache

    async def extract(self, text: str) -> List[str]:
        key = keyword_cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("keyword cache hit", extra={"cache_key": key[:12]})
            return list(cached)

        if inspect.iscoroutinefunction(self._extractor.extract):
            keywords = await self._extractor.extract(text)
        else:
            keywords = await asyncio.to_thread(self._extractor.extract, text)
        result = [str(k) for k in (keywords or [])]
        self._cache.set(key, list(result))
        logger.debug("keyword cache miss", extra={"cache_key": key[:12], "keyword_count": len(result)})
        return result
