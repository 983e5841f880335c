# src/wiki_rag/config.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, List, Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _find_repo_root(start: Path) -> Path:
    """
    Best-effort repository root discovery.
    - Prefer the closest ancestor containing `pyproject.toml`.
    - Fallback to the start directory if not found.
    """
    cur = start.resolve()
    for _ in range(20):
        if (cur / "pyproject.toml").exists():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return start.resolve()


PACKAGE_ROOT = Path(__file__).resolve().parent
REPO_ROOT = _find_repo_root(PACKAGE_ROOT)

# Load .env into process environment early so collaborator SDKs can read it.
load_dotenv(str(REPO_ROOT / ".env"), override=False)

DATA_ROOT = REPO_ROOT / ".data"


class Settings(BaseSettings):
    DEBUG: bool = False
    WIKI_RAG_LOG_LEVEL: str = "INFO"

    # final answer-ready candidate count handed to the answer generator
    WIKI_RAG_TOP_K: int = Field(default=10, ge=1, le=1000)

    # title / label stages
    WIKI_RAG_TITLE_EXACT_THRESHOLD: float = Field(default=0.85, ge=0.0, le=1.0)
    WIKI_RAG_TITLE_PARTIAL_MIN_RATIO: float = Field(default=0.33, ge=0.0, le=1.0)
    WIKI_RAG_LABEL_MIN_SCORE: float = Field(default=0.3, ge=0.0, le=1.0)
    WIKI_RAG_EXCLUDE_LABELS: Annotated[List[str], NoDecode] = Field(default_factory=list)

    # lexical / vector adapters request top_k * multiplier candidates
    WIKI_RAG_LEXICAL_MULTIPLIER: int = Field(default=3, ge=1)
    WIKI_RAG_VECTOR_MULTIPLIER: int = Field(default=5, ge=1)

    WIKI_RAG_STAGE_TIMEOUT_S: float = Field(default=5.0, gt=0)
    WIKI_RAG_REQUEST_TIMEOUT_S: float = Field(default=10.0, gt=0)

    # fusion weights (priority: title-exact > title-partial > vector ~ lexical > label)
    WIKI_RAG_WEIGHT_TITLE_EXACT: float = 1.0
    WIKI_RAG_WEIGHT_TITLE_PARTIAL: float = 0.4
    WIKI_RAG_WEIGHT_VECTOR: float = 0.3
    WIKI_RAG_WEIGHT_LEXICAL: float = 0.3
    WIKI_RAG_WEIGHT_LABEL: float = 0.2
    WIKI_RAG_DEDUPE_GRANULARITY: Literal["page", "chunk"] = "page"

    # keyword extraction cache
    WIKI_RAG_KEYWORD_CACHE_TTL_S: float = Field(default=24 * 60 * 60, gt=0)
    WIKI_RAG_KEYWORD_CACHE_MAX_SIZE: int = Field(default=500, ge=1)

    WIKI_RAG_FTS_DATABASE_URL: str = f"sqlite+aiosqlite:///{(DATA_ROOT / 'wiki_fts.db').as_posix()}"

    @field_validator("WIKI_RAG_EXCLUDE_LABELS", mode="before")
    @classmethod
    def _split_labels(cls, value: object) -> object:
        # accept a JSON list or "archive,folder" from the environment
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [part.strip() for part in raw.split(",") if part.strip()]
        return value

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
