# playground/utils_gate/test_errors_logging_gate.py

"""
[Role] utils_gate (errors/logging/config): error contract, JSON log lines with trace fields, settings parsing.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from wiki_rag.backend.pipelines.base.context import PipelineContext
from wiki_rag.backend.utils.errors import (
    BadRequestError,
    DomainError,
    ExternalDependencyError,
    InvalidQueryError,
    StageTimeoutError,
    describe_error,
    is_valid_error_code,
)
from wiki_rag.backend.utils.logging_ import StructuredLogFormatter, build_log_fields, hash_text, truncate_text
from wiki_rag.config import Settings


pytestmark = pytest.mark.utils_gate


@pytest.mark.parametrize(
    "code,valid",
    [
        ("RETRIEVAL__INVALID_QUERY", True),
        ("retrieval.stage_timeout", True),
        ("bad_request", True),
        ("Retrieval-Error", False),
        ("", False),
    ],
)
def test_error_code_rules(code: str, valid: bool) -> None:
    assert is_valid_error_code(code) is valid


def test_domain_error_contract() -> None:
    with pytest.raises(ValueError):
        DomainError(error_code="nope", message="x")
    with pytest.raises(ValueError):
        DomainError(error_code="bad_request", message="x", detail={"obj": object()})

    err = InvalidQueryError(detail={"keyword_count": 0})
    assert isinstance(err, BadRequestError)
    assert err.retryable is False
    assert err.to_dict() == {
        "code": "RETRIEVAL__INVALID_QUERY",
        "message": "query text and keywords are both empty",
        "detail": {"keyword_count": 0},
    }


def test_external_errors_describe_themselves() -> None:
    cause = ConnectionError("refused")
    err = ExternalDependencyError(error_code="RETRIEVAL__LEXICAL_UNAVAILABLE", message="down", cause=cause)
    assert err.retryable is True and err.__cause__ is cause
    assert describe_error(err) == "RETRIEVAL__LEXICAL_UNAVAILABLE: down"
    assert describe_error(ValueError("bad")) == "ValueError: bad"

    timeout = StageTimeoutError(stage="vector", timeout_s=0.25)
    assert timeout.detail == {"stage": "vector", "timeout_s": 0.25}
    assert "vector" in str(timeout)


def test_structured_formatter_emits_json_with_trace_fields() -> None:
    ctx = PipelineContext.create(trace_id="t-1", request_id="r-1")
    fields = build_log_fields(context=ctx, stage="lexical", extra={"hit_count": 3, "skip": None})
    assert fields == {"trace_id": "t-1", "request_id": "r-1", "stage": "lexical", "hit_count": 3}

    record = logging.LogRecord("wiki_rag.test", logging.WARNING, __file__, 1, "stage degraded", None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    payload = json.loads(StructuredLogFormatter().format(record))
    assert payload["message"] == "stage degraded"
    assert payload["level"] == "WARNING"
    assert payload["trace_id"] == "t-1" and payload["hit_count"] == 3


def test_formatter_includes_exception_text() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("wiki_rag.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    payload = json.loads(StructuredLogFormatter().format(record))
    assert "RuntimeError: boom" in payload["exc_info"]


def test_text_helpers() -> None:
    assert truncate_text("x" * 10, max_len=4) == "xxxx...(truncated)"
    assert truncate_text(None) is None
    assert hash_text("") == ""
    assert hash_text("q") == hash_text("q") and len(hash_text("q")) == 64


def test_context_records_errors_per_stage() -> None:
    ctx = PipelineContext.create()
    ctx.record_error("vector", "first")
    ctx.record_error("vector", "second")
    ctx.record_error("  ", "ignored")
    assert ctx.errors == {"vector": "first; second"}
    assert ctx.trace_id != ctx.request_id


def test_settings_parse_exclude_labels(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WIKI_RAG_EXCLUDE_LABELS", "archive, meeting-notes")
    monkeypatch.setenv("WIKI_RAG_TOP_K", "7")
    s = Settings()
    assert s.WIKI_RAG_EXCLUDE_LABELS == ["archive", "meeting-notes"]
    assert s.WIKI_RAG_TOP_K == 7

    monkeypatch.setenv("WIKI_RAG_EXCLUDE_LABELS", '["archive"]')
    assert Settings().WIKI_RAG_EXCLUDE_LABELS == ["archive"]

    monkeypatch.setenv("WIKI_RAG_DEDUPE_GRANULARITY", "section")
    with pytest.raises(ValueError):
        Settings()
