# src/wiki_rag/backend/kb/fts.py

"""
[Role] SQLite FTS5 term index: the reference lexical collaborator (`search(query, limit) -> [TermHit]`).
[Boundary] SQLite only. Index maintenance (index_records/delete_records) is provided for ingestion and
           tests; the retrieval engine itself only ever calls search().
[Upstream] ingestion writes canonical Records via index_records; kb/engine.py provides the session factory.
[Downstream] pipelines/retrieval/keyword.py wraps SqliteTermIndex.search and converts hits to Candidates.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Literal, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wiki_rag.backend.kb.engine import create_engine, create_sessionmaker
from wiki_rag.backend.kb.protocols import TermHit
from wiki_rag.backend.kb.records import normalize_record
from wiki_rag.backend.utils.logging_ import get_logger


FTS_TABLE = "chunk_fts"  # docstring: FTS5 virtual table name

# bm25 column weights: record_id, page_id (unindexed), title, content, labels
_BM25_WEIGHTS = "0.0, 0.0, 2.0, 1.0, 1.0"

logger = get_logger("kb.fts")


async def ensure_chunk_fts(session: AsyncSession) -> None:
    """
    Ensure the FTS5 virtual table exists.

    Columns:
      - record_id / page_id: stored, not indexed
      - title / content / labels: indexed (unicode61 tokenizer)
    """
    await session.execute(
        text(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE}
            USING fts5(
              record_id UNINDEXED,
              page_id UNINDEXED,
              title,
              content,
              labels,
              tokenize = 'unicode61'
            );
            """
        )
    )
    await session.commit()


async def delete_records(session: AsyncSession, record_ids: Iterable[str]) -> int:
    """Remove rows by record id (stale chunks after re-ingestion). Caller commits."""
    removed = 0
    for rid in record_ids:
        result = await session.execute(text(f"DELETE FROM {FTS_TABLE} WHERE record_id = :rid"), {"rid": str(rid)})
        removed += int(result.rowcount or 0)
    return removed


async def index_records(session: AsyncSession, rows: Iterable[Any]) -> int:
    """
    Upsert records into the FTS table (delete-then-insert per id) and commit.
    Rows go through the normalization boundary first.
    """
    records = [normalize_record(r) for r in rows]
    if not records:
        return 0
    await delete_records(session, [r.id for r in records])
    await session.execute(
        text(
            f"""
            INSERT INTO {FTS_TABLE}(record_id, page_id, title, content, labels)
            VALUES (:record_id, :page_id, :title, :content, :labels)
            """
        ),
        [
            {
                "record_id": r.id,
                "page_id": r.page_id,
                "title": r.title,
                "content": r.content,
                "labels": " ".join(r.labels),
            }
            for r in records
        ],
    )
    await session.commit()
    return len(records)


def tokenize_query(query: str) -> List[str]:
    """Unicode word tokens; FTS operators and punctuation are dropped."""
    return [t for t in re.findall(r"\w+", str(query or ""), flags=re.UNICODE) if t.strip()]


def build_match_expression(tokens: Sequence[str], *, mode: Literal["and", "or"]) -> str:
    """Quote each token as an FTS5 string so user text never becomes query syntax."""
    if not tokens:
        return ""
    quoted = ['"' + t.replace('"', '""') + '"' for t in tokens]
    sep = " OR " if mode == "or" else " AND "
    return sep.join(quoted)


async def search_chunks(
    session: AsyncSession,
    *,
    match: str,
    limit: int,
) -> List[Dict[str, Any]]:
    """Raw FTS5 search ordered by weighted bm25 (lower is better), ties by record_id."""
    if not match.strip() or int(limit) <= 0:
        return []
    sql = f"""
    SELECT
      record_id AS record_id,
      bm25({FTS_TABLE}, {_BM25_WEIGHTS}) AS score
    FROM {FTS_TABLE}
    WHERE {FTS_TABLE} MATCH :q
    ORDER BY score ASC, record_id ASC
    LIMIT :limit
    """
    rows = (await session.execute(text(sql), {"q": match, "limit": int(limit)})).mappings().all()
    return [dict(r) for r in rows]


class SqliteTermIndex:
    """
    [Role] TermIndex over the chunk_fts table; AND query first, OR fallback when AND finds nothing.
    [Boundary] Read-only during retrieval; each search uses its own short session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, allow_fallback: bool = True) -> None:
        self._session_factory = session_factory
        self.allow_fallback = allow_fallback

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @classmethod
    def from_url(cls, url: str | None = None, *, allow_fallback: bool = True) -> "SqliteTermIndex":
        return cls(create_sessionmaker(create_engine(url=url)), allow_fallback=allow_fallback)

    async def search(self, query: str, limit: int) -> List[TermHit]:
        tokens = tokenize_query(query)
        if not tokens or int(limit) <= 0:
            return []

        mode: Literal["and", "or"] = "and"
        async with self._session_factory() as session:
            rows = await search_chunks(session, match=build_match_expression(tokens, mode="and"), limit=limit)
            if self.allow_fallback and not rows and len(tokens) > 1:
                mode = "or"
                rows = await search_chunks(session, match=build_match_expression(tokens, mode="or"), limit=limit)

        logger.debug("fts search", extra={"token_count": len(tokens), "mode": mode, "hit_count": len(rows)})
        return [
            TermHit(id=str(r["record_id"]), rank=float(pos), score=float(r["score"] or 0.0))
            for pos, r in enumerate(rows, start=1)
        ]
