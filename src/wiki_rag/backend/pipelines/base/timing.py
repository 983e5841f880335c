# src/wiki_rag/backend/pipelines/base/timing.py

"""
[Role] Stage timing (ms) collection for one retrieval request, exported as a JSON-safe dict.
[Boundary] No tracing/profiling backend; lightweight perf_counter based timers only.
[Upstream] pipelines wrap each stage in `with timing.stage("lexical"): ...` (also inside asyncio tasks).
[Downstream] RetrievalRecord.timing_ms and the gate tests' structural assertions.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional


def _now_ms() -> float:
    """High resolution monotonic timestamp in ms; only meaningful for differences."""
    return time.perf_counter() * 1000.0


@dataclass
class TimingCollector:
    """
    [Role] Collect per-stage durations and export dict[str, float] (ms).
    [Boundary] Stage keys are free-form. Writes are lock-protected because fanned-out stages
               finish on worker threads as well as on the event loop.
    """

    _stages_ms: Dict[str, float] = field(default_factory=dict)
    _start_ms: float = field(default_factory=_now_ms)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def reset(self) -> None:
        with self._lock:
            self._stages_ms.clear()
            self._start_ms = _now_ms()

    def add_ms(self, key: str, ms: float, *, accumulate: bool = True) -> None:
        """Record a duration; negative values are clamped to 0."""
        k = str(key).strip()
        if not k:
            return
        v = max(float(ms), 0.0)
        with self._lock:
            if accumulate:
                self._stages_ms[k] = self._stages_ms.get(k, 0.0) + v
            else:
                self._stages_ms[k] = v

    @contextmanager
    def stage(self, key: str, *, accumulate: bool = False) -> Iterator[None]:
        """Time the wrapped block; the duration is written even if the block raises or is cancelled."""
        start = _now_ms()
        try:
            yield
        finally:
            self.add_ms(key, _now_ms() - start, accumulate=accumulate)

    def total_ms(self) -> float:
        return _now_ms() - self._start_ms

    def to_dict(self, *, include_total: bool = True, total_key: str = "total") -> Dict[str, float]:
        with self._lock:
            out = dict(self._stages_ms)
        if include_total:
            out[total_key] = float(self.total_ms())
        return out

    def get(self, key: str, default: Optional[float] = None) -> Optional[float]:
        with self._lock:
            return self._stages_ms.get(key, default)
