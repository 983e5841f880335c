# src/wiki_rag/backend/utils/constants.py

"""
[Role] Central stage tags, default thresholds and protocol field names shared across retrieval modules.
[Boundary] No runtime-mutable configuration and no environment reads (see wiki_rag.config).
[Upstream] pipelines/schemas/logging import these names instead of re-typing literals.
[Downstream] audit snapshots and log lines keep consistent keys.
"""

from __future__ import annotations


SOURCE_TITLE_EXACT = "title-exact"  # docstring: title exact/near-exact match
SOURCE_TITLE_PARTIAL = "title-partial"  # docstring: keyword containment in title
SOURCE_LABEL_MATCH = "label-match"  # docstring: keyword vs title/label metadata
SOURCE_LEXICAL = "lexical"  # docstring: term index (BM25-like)
SOURCE_VECTOR = "vector"  # docstring: nearest-neighbour index

# Tie-break order for fused candidates; lower index wins.
STAGE_PRIORITY = (
    SOURCE_TITLE_EXACT,
    SOURCE_TITLE_PARTIAL,
    SOURCE_LEXICAL,
    SOURCE_VECTOR,
    SOURCE_LABEL_MATCH,
)

DEFAULT_TITLE_EXACT_THRESHOLD = 0.85
DEFAULT_TITLE_PARTIAL_MIN_RATIO = 0.33
DEFAULT_LABEL_MIN_SCORE = 0.3
LABEL_TITLE_HIT_SCORE = 0.5  # docstring: any keyword contained in the title
LABEL_LABEL_HIT_SCORE = 0.5  # docstring: any keyword contained in any label

DEFAULT_LEXICAL_MULTIPLIER = 3
DEFAULT_VECTOR_MULTIPLIER = 5

DEDUPE_BY_PAGE = "page"
DEDUPE_BY_CHUNK = "chunk"

TRACE_ID_KEY = "trace_id"
REQUEST_ID_KEY = "request_id"
STAGE_KEY = "stage"

TRACE_FIELD_KEYS = (
    TRACE_ID_KEY,
    REQUEST_ID_KEY,
)  # docstring: fields lifted from a context object into every log line

TIMING_TOTAL_KEY = "total"
TIMING_FANOUT_KEY = "fanout"
TIMING_FUSION_KEY = "fusion"

BOM = "\ufeff"  # docstring: stripped from titles/content/queries before matching
