# src/wiki_rag/backend/pipelines/base/context.py

"""
[Role] PipelineContext: per-request metadata shared by the retrieval stages (trace ids, timing,
       degraded-stage errors, feature flags).
[Boundary] No collaborators and no cross-request state; one context per retrieval request.
[Upstream] services/retrieval_service.py or tests create it (or let the pipeline create one).
[Downstream] stages record timings/errors here; pipeline.py copies them into RetrievalRecord.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .timing import TimingCollector


def new_trace_id() -> str:
    return str(uuid.uuid4())


@dataclass
class PipelineContext:
    """
    [Role] Aggregate trace/request ids, the TimingCollector and the per-stage error snapshot.
    [Boundary] record_error keeps the first reason per stage; later ones are appended with `; `.
    """

    trace_id: str = field(default_factory=new_trace_id)
    request_id: str = field(default_factory=new_trace_id)

    timing: TimingCollector = field(default_factory=TimingCollector)

    errors: Dict[str, str] = field(default_factory=dict)  # docstring: stage -> reason it contributed nothing
    meta: Dict[str, Any] = field(default_factory=dict)  # docstring: debug flags / host annotations

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        *,
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "PipelineContext":
        return cls(
            trace_id=str(trace_id) if trace_id else new_trace_id(),
            request_id=str(request_id) if request_id else new_trace_id(),
            timing=TimingCollector(),
            meta=dict(meta or {}),
        )

    def record_error(self, stage: str, reason: str) -> None:
        key = str(stage).strip()
        if not key:
            return
        with self._lock:
            prev = self.errors.get(key)
            self.errors[key] = f"{prev}; {reason}" if prev else str(reason)

    def timing_ms(self, *, include_total: bool = True, total_key: str = "total") -> Dict[str, float]:
        return self.timing.to_dict(include_total=include_total, total_key=total_key)
