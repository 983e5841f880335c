# src/wiki_rag/backend/utils/errors.py

"""
[Role] Domain error contract (error_code/message/detail/cause/retryable) for the retrieval engine.
[Boundary] No web-framework coupling and no logging; errors only carry semantics.
[Upstream] pipelines raise InvalidQueryError; adapters wrap collaborator failures in ExternalDependencyError.
[Downstream] host applications map DomainError.to_dict() onto their own response envelope.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional


ErrorDetail = Dict[str, Any]  # docstring: must stay JSON-safe

ERROR_CODE_PATTERN_AREA = re.compile(r"^[A-Z][A-Z0-9]*(?:__[A-Z0-9_]+)+$")  # docstring: AREA__REASON
ERROR_CODE_PATTERN_DOT = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")  # docstring: area.reason

STANDARD_ERROR_CODES = {
    "bad_request",
    "external_dependency",
    "internal_error",
}

ERROR_RETRYABLE_BY_CODE = {
    "bad_request": False,
    "external_dependency": True,
    "internal_error": False,
}

INVALID_QUERY_CODE = "RETRIEVAL__INVALID_QUERY"
STAGE_TIMEOUT_CODE = "RETRIEVAL__STAGE_TIMEOUT"


def is_valid_error_code(error_code: str) -> bool:
    """
    [Role] Check an error code against the naming rules or the standard set.
    [Boundary] Format only; global uniqueness is not checked.
    """

    if not error_code:
        return False
    if error_code in STANDARD_ERROR_CODES:
        return True
    return bool(ERROR_CODE_PATTERN_AREA.match(error_code) or ERROR_CODE_PATTERN_DOT.match(error_code))


def ensure_json_safe_detail(detail: ErrorDetail) -> ErrorDetail:
    """Reject details that are not a JSON-serializable dict."""

    if not isinstance(detail, dict):
        raise ValueError("detail must be a dict")
    try:
        json.dumps(detail)
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc
    return detail


class DomainError(Exception):
    """
    [Role] Minimal domain error: stable error_code, readable message, JSON-safe detail, optional cause.
    [Boundary] Carries meaning only; no logging, no transport mapping.
    """

    def __init__(
        self,
        *,
        error_code: str,
        message: str,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        retryable: Optional[bool] = None,
        allow_nonstandard_code: bool = False,
    ) -> None:
        if not is_valid_error_code(error_code) and not allow_nonstandard_code:
            raise ValueError(f"invalid error_code: {error_code}")
        normalized_detail = detail or {}
        ensure_json_safe_detail(normalized_detail)

        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.detail = normalized_detail
        self.cause = cause
        self.retryable = retryable if retryable is not None else ERROR_RETRYABLE_BY_CODE.get(error_code, False)

        if cause is not None:
            self.__cause__ = cause  # docstring: keep the exception chain

    def to_dict(self) -> Dict[str, Any]:
        """Error envelope body (code/message/detail); the cause is never exposed."""

        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class BadRequestError(DomainError):
    """Caller input is unusable (not retryable)."""

    def __init__(
        self,
        *,
        error_code: str = "bad_request",
        message: str = "bad request",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            error_code=error_code,
            message=message,
            detail=detail,
            cause=cause,
            retryable=False,
        )


class InvalidQueryError(BadRequestError):
    """
    [Role] The query carries neither text nor keywords; rejected before any stage runs.
    [Upstream] run_retrieval_pipeline / RetrievalService.retrieve.
    [Downstream] the only error the orchestrator surfaces to its caller.
    """

    def __init__(
        self,
        *,
        message: str = "query text and keywords are both empty",
        detail: Optional[ErrorDetail] = None,
    ) -> None:
        super().__init__(error_code=INVALID_QUERY_CODE, message=message, detail=detail)


class ExternalDependencyError(DomainError):
    """
    [Role] A collaborator (term index, vector index, embedder, extractor) failed or is unavailable.
    [Boundary] Inside the retrieval pipeline it is recorded and degraded, never propagated.
    """

    def __init__(
        self,
        *,
        error_code: str = "external_dependency",
        message: str = "external dependency error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(
            error_code=error_code,
            message=message,
            detail=detail,
            cause=cause,
            retryable=retryable if retryable is not None else True,
        )


class StageTimeoutError(ExternalDependencyError):
    """A retrieval stage exceeded its own timeout or the request deadline."""

    def __init__(self, *, stage: str, timeout_s: float) -> None:
        super().__init__(
            error_code=STAGE_TIMEOUT_CODE,
            message=f"stage {stage} timed out after {timeout_s:.3f}s",
            detail={"stage": stage, "timeout_s": float(timeout_s)},
        )
        self.stage = stage
        self.timeout_s = float(timeout_s)


def describe_error(error: BaseException) -> str:
    """
    [Role] Compact `Class: message` string for error snapshots (RetrievalRecord.errors).
    [Boundary] DomainError renders its error_code instead of the class name.
    """

    if isinstance(error, DomainError):
        return f"{error.error_code}: {error.message}"
    return f"{error.__class__.__name__}: {error}"
