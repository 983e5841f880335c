# src/wiki_rag/backend/utils/logging_.py

"""
[Role] Structured logging conventions: one project logger tree, a minimal JSON formatter and safe-output helpers.
[Boundary] No log backend binding; no business logging here; trace ids are read, never generated.
[Upstream] pipelines/services call get_logger/log_event with a PipelineContext or explicit fields.
[Downstream] stdout/file collectors parse the JSON lines for search and debugging.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from wiki_rag.backend.utils.constants import TRACE_FIELD_KEYS


DEFAULT_LOGGER_NAME = "wiki_rag"  # docstring: project root logger
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_MAX_TEXT_LEN = 160  # docstring: preview length for user text

_HANDLER_NAME = "structured_json"

_LOG_RECORD_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}  # docstring: built-in LogRecord attributes, never emitted as extra fields


class StructuredLogFormatter(logging.Formatter):
    """
    [Role] Render a LogRecord as one JSON line (base fields + extra).
    [Boundary] No redaction; callers keep raw user text out of `extra`.
    """

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            k: v for k, v in record.__dict__.items() if k not in _LOG_RECORD_RESERVED and v is not None
        }  # docstring: only structured extras, None dropped
        payload.update(extras)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return json.dumps(payload, ensure_ascii=self._ensure_ascii, default=str)


def configure_logging(
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    level: int = DEFAULT_LOG_LEVEL,
    ensure_ascii: bool = True,
) -> logging.Logger:
    """
    [Role] Attach the JSON handler to the project base logger (idempotent).
    [Boundary] Never touches the root logger.
    [Upstream] process entry points, tests, get_logger.
    """

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    has_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "name", "") == _HANDLER_NAME for h in logger.handlers
    )
    if not has_handler:
        handler = logging.StreamHandler()
        handler.name = _HANDLER_NAME  # docstring: marker to avoid double attach
        handler.setLevel(level)
        handler.setFormatter(StructuredLogFormatter(ensure_ascii=ensure_ascii))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None, *, level: Optional[int] = None) -> logging.Logger:
    """
    [Role] Return a logger under the `wiki_rag` tree, configuring the base logger on first use.
    [Boundary] Does not override an external logging setup of other trees.
    """

    base = logging.getLogger(DEFAULT_LOGGER_NAME)
    if not any(getattr(h, "name", "") == _HANDLER_NAME for h in base.handlers):
        configure_logging(level=_resolve_default_level())
    full_name = name or DEFAULT_LOGGER_NAME
    if name and not name.startswith(DEFAULT_LOGGER_NAME):
        full_name = f"{DEFAULT_LOGGER_NAME}.{name}"  # docstring: always mounted under the project root
    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(level)
    return logger


def _resolve_default_level() -> int:
    """Read WIKI_RAG_LOG_LEVEL from settings; unknown names fall back to INFO."""
    from wiki_rag.config import settings

    level = logging.getLevelName(str(settings.WIKI_RAG_LOG_LEVEL).strip().upper())
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL


def build_log_fields(
    *,
    context: Optional[Any] = None,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
    stage: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    [Role] Build the structured field dict (trace/request ids, stage, extras).
    [Boundary] Missing trace ids stay missing; values are not validated.
    [Upstream] log_event, or callers building `extra=` themselves.
    """

    fields: Dict[str, Any] = {}
    if context is not None:
        fields.update(_extract_fields_from_context(context))

    explicit_fields = {
        "trace_id": trace_id,
        "request_id": request_id,
        "stage": stage,
    }
    for key, value in explicit_fields.items():
        if value is not None:
            fields[key] = str(value)

    if extra:
        for key, value in extra.items():
            if value is not None:
                fields[key] = value

    return fields


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    context: Optional[Any] = None,
    fields: Optional[Mapping[str, Any]] = None,
    exc_info: Optional[Any] = None,
) -> None:
    """Single entry point for structured log lines (context trace fields attached automatically)."""

    extra = build_log_fields(context=context, extra=fields)
    logger.log(level, message, extra=extra, exc_info=exc_info)


def truncate_text(text: Optional[str], *, max_len: int = DEFAULT_MAX_TEXT_LEN) -> Optional[str]:
    """
    [Role] Shorten long text before logging it.
    [Boundary] Length control only, no sensitivity detection.
    """

    if text is None:
        return None
    s = str(text)
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]}...(truncated)"


def hash_text(text: Optional[str]) -> Optional[str]:
    """
    [Role] Stable sha256 digest of a text (log correlation and cache keys).
    [Boundary] Unsalted; not an authentication primitive.
    """

    if text is None:
        return None
    s = str(text)
    if not s:
        return ""
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _extract_fields_from_context(context: Any) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key in TRACE_FIELD_KEYS:
        value = _read_context_value(context, key)
        if value is not None:
            fields[key] = str(value)
    return fields


def _read_context_value(context: Any, key: str) -> Optional[Any]:
    if isinstance(context, Mapping):
        return context.get(key)
    return getattr(context, key, None)
