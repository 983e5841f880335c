# src/wiki_rag/backend/kb/records.py

"""
[Role] Normalization boundary: turn loosely-shaped collaborator rows (mappings or objects, mixed field
       names across schema versions) into canonical Record instances.
[Boundary] Field aliasing and type coercion only; no I/O. Rows that cannot yield an id are rejected.
[Upstream] snapshot providers / ingestion exports (pageId vs page_id, labels as list/JSON/CSV string).
[Downstream] every retrieval stage operates on the Record returned here and nothing else.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from wiki_rag.backend.schemas.retrieval import Record
from wiki_rag.backend.utils.constants import BOM
from wiki_rag.backend.utils.logging_ import get_logger


logger = get_logger("kb.records")

_ID_KEYS = ("id", "record_id", "chunk_id")
_PAGE_ID_KEYS = ("page_id", "pageId", "pageid", "pageID")
_CHUNK_INDEX_KEYS = ("chunk_index", "chunkIndex", "chunk")
_EMBEDDING_KEYS = ("embedding", "vector")
_LAST_UPDATED_KEYS = ("last_updated", "lastUpdated", "updated_at")
_SPACE_KEY_KEYS = ("space_key", "spaceKey")


def _read(raw: Any, keys: Sequence[str]) -> Any:
    """First non-None value among `keys` (mapping lookup or attribute access)."""
    for key in keys:
        if isinstance(raw, Mapping):
            value = raw.get(key)
        else:
            value = getattr(raw, key, None)
        if value is not None:
            return value
    return None


def _clean_text(value: Any) -> str:
    return str(value or "").replace(BOM, "").strip()


def _clean_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)  # docstring: numeric page ids exported as floats
    s = str(value).strip()
    return s or None


def coerce_labels(value: Any) -> Tuple[str, ...]:
    """
    [Role] Accept labels as list/tuple/set, JSON list string, comma-separated string or None.
    [Boundary] Output is trimmed, de-duplicated and sorted; blanks dropped.
    """
    if value is None:
        return ()
    items: Iterable[Any]
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return ()
        if raw.startswith("["):
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                decoded = [part for part in raw.strip("[]").split(",")]
            items = decoded if isinstance(decoded, list) else [decoded]
        else:
            items = raw.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = [value]
    cleaned = {str(v).strip().strip("\"'") for v in items if v is not None}
    return tuple(sorted(v for v in cleaned if v))


def _coerce_chunk_index(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        idx = int(value)
    except (TypeError, ValueError):
        return None
    return idx if idx >= 0 else None


def _chunk_index_from_id(record_id: str, page_id: str) -> Optional[int]:
    prefix = f"{page_id}-"
    if record_id.startswith(prefix):
        return _coerce_chunk_index(record_id[len(prefix):])
    return None


def _coerce_embedding(value: Any) -> Optional[Tuple[float, ...]]:
    if value is None:
        return None
    if hasattr(value, "tolist"):
        value = value.tolist()  # docstring: array-like rows from columnar stores
    vec = tuple(float(x) for x in value)
    return vec or None


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # epoch milliseconds are common in wiki exports
        seconds = float(value) / 1000.0 if float(value) > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_record(raw: Any) -> Record:
    """
    [Role] Build the canonical Record from one collaborator row.
    [Boundary] Raises ValueError when neither an id nor a page id can be resolved.
    [Upstream] normalize_records / InMemoryCorpus / SqliteTermIndex.index_records.
    [Downstream] Record consumed by every stage.
    """
    if isinstance(raw, Record):
        return raw

    record_id = _clean_id(_read(raw, _ID_KEYS))
    page_id = _clean_id(_read(raw, _PAGE_ID_KEYS))
    chunk_index = _coerce_chunk_index(_read(raw, _CHUNK_INDEX_KEYS))

    if not page_id and record_id:
        page_id, sep, tail = record_id.rpartition("-")
        if not sep or not page_id:
            page_id = record_id  # docstring: single-chunk page whose id is the page id
        elif chunk_index is None:
            chunk_index = _coerce_chunk_index(tail)
    if not page_id:
        raise ValueError("record has neither id nor page_id")

    if chunk_index is None and record_id:
        chunk_index = _chunk_index_from_id(record_id, page_id)
    if chunk_index is None:
        chunk_index = 0
    if not record_id:
        record_id = f"{page_id}-{chunk_index}"

    return Record(
        id=record_id,
        page_id=page_id,
        chunk_index=chunk_index,
        title=_clean_text(_read(raw, ("title",))),
        content=_clean_text(_read(raw, ("content", "text"))),
        labels=coerce_labels(_read(raw, ("labels",))),
        embedding=_coerce_embedding(_read(raw, _EMBEDDING_KEYS)),
        url=_clean_id(_read(raw, ("url",))),
        space_key=_clean_id(_read(raw, _SPACE_KEY_KEYS)),
        last_updated=_coerce_datetime(_read(raw, _LAST_UPDATED_KEYS)),
    )


def normalize_records(rows: Iterable[Any]) -> List[Record]:
    """
    Normalize a batch, skipping (and logging) rows that cannot be normalized. Later duplicates of an id
    replace earlier ones, matching "superseded on re-ingestion".
    """
    by_id: dict[str, Record] = {}
    skipped = 0
    for row in rows:
        try:
            rec = normalize_record(row)
        except ValueError as exc:
            skipped += 1
            logger.warning("skipping malformed record", extra={"reason": str(exc)})
            continue
        by_id.pop(rec.id, None)
        by_id[rec.id] = rec
    if skipped:
        logger.info("record normalization finished", extra={"kept": len(by_id), "skipped": skipped})
    return list(by_id.values())


def has_excluded_label(record: Record, exclude_labels: Iterable[str]) -> bool:
    """Case-insensitive exact label match against an exclusion list (e.g. archive, meeting notes)."""
    excluded = {str(x).strip().lower() for x in exclude_labels if str(x).strip()}
    if not excluded:
        return False
    return any(label.lower() in excluded for label in record.labels)
