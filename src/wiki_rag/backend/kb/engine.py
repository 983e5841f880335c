# src/wiki_rag/backend/kb/engine.py

"""
[Role] Async engine / session factory for the SQLite FTS5 term index.
[Boundary] No table definitions (see kb/fts.py) and no transaction orchestration.
[Upstream] config.py provides WIKI_RAG_FTS_DATABASE_URL; callers may override the URL.
[Downstream] SqliteTermIndex opens one short read session per search.
"""

from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def resolve_db_url(override: str | None = None) -> str:
    """
    Resolve the FTS database URL.

    Priority:
        1) explicit override
        2) env: WIKI_RAG_FTS_DATABASE_URL
        3) settings: WIKI_RAG_FTS_DATABASE_URL (loads .env)
    """
    if override:
        return override
    env_url = os.getenv("WIKI_RAG_FTS_DATABASE_URL", "").strip()
    if env_url:
        return env_url
    from wiki_rag.config import settings

    return settings.WIKI_RAG_FTS_DATABASE_URL


def _ensure_sqlite_parent(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    database = parsed.database or ""
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """
    Create the AsyncEngine (aiosqlite driver for SQLite URLs).
    """
    db_url = resolve_db_url(url)
    _ensure_sqlite_parent(db_url)
    db_echo = echo if echo is not None else (os.getenv("SQL_ECHO", "0") == "1")
    return create_async_engine(db_url, echo=db_echo, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
