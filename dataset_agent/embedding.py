"""
Row selection, embedding and vector search.

Embedding is best-effort per row: a failed call or a vector of the wrong
size skips that row and never fails the ingestion.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from .charts import extract_json
from .collaborators import ChatModel, Embedder, VectorIndex, VectorPoint
from .models import VectorMatch, VectorSearchResult
from .rules import (
    EMBED_DIMENSIONS,
    EMBED_TEXT_CHARS,
    EMPTY,
    ID_TEXT_CHARS,
    MAX_EMBED_ROWS,
    RANK_SAMPLE,
    TOP_K_MAX,
    TOP_K_MIN,
)
from .schema import Row

logger = logging.getLogger(__name__)

RANK_SYSTEM_PROMPT = (
    f"Given a list of rows (index + short text), choose up to {MAX_EMBED_ROWS} indices that are DIVERSE "
    "and informative for future semantic search.\n"
    "Return ONLY a JSON array of indices (numbers)."
)


def clamp_top_k(k: Optional[int]) -> int:
    return max(TOP_K_MIN, min(TOP_K_MAX, k if k is not None else 5))


def fnv1a_base36(text: str) -> str:
    """32-bit FNV-1a over UTF-16 code units, rendered in base 36."""
    h = 2166136261
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * 16777619) & 0xFFFFFFFF
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        h, rem = divmod(h, 36)
        out = digits[rem] + out
        if not h:
            return out


def _cell(value: Any) -> str:
    return EMPTY if value is None else str(value)


def row_text(columns: List[str], row: Row) -> str:
    return " | ".join(f"{c}: {_cell(row.get(c))}" for c in columns)


def parse_vector(out: Any) -> Optional[List[float]]:
    """Find the embedding in the shapes embedding backends commonly return."""
    if not out:
        return None
    if isinstance(out, dict):
        data = out.get("data")
        if isinstance(data, list) and data and isinstance(data[0], list) and data[0]:
            return [float(v) for v in data[0]]
        for key in ("embedding", "embeddings"):
            emb = out.get(key)
            if isinstance(emb, list) and emb and isinstance(emb[0], list):
                emb = emb[0]
            if isinstance(emb, list) and emb:
                return [float(v) for v in emb]
        return None
    if isinstance(out, list) and isinstance(out[0], (int, float)):
        return [float(v) for v in out]
    return None


def _finite(values: List[float]) -> List[float]:
    return [v if math.isfinite(v) else 0.0 for v in values]


async def embed_text(embedder: Embedder, text: str) -> Tuple[Optional[List[float]], str]:
    """Return ``(vector, debug)``; the vector is None when embedding failed."""
    clean = (text or "").strip()[:EMBED_TEXT_CHARS]
    if not clean:
        return None, "Text is empty after cleaning"
    try:
        vec = parse_vector(await embedder.embed(clean))
    except Exception as exc:
        return None, f"Embedding failed: {exc}"
    if not vec:
        return None, "Embedding response held no vector"
    return _finite(vec), f"ok ({len(vec)} dims)"


async def rank_rows_for_embedding(chat: ChatModel, columns: List[str], rows: List[Row]) -> Tuple[List[Row], bool]:
    """
    Ask the chat model for a diverse subset of rows worth embedding.

    Returns the chosen rows and whether the first-rows fallback was used.
    """
    sample = rows[:RANK_SAMPLE]
    compact = [
        {"i": i, "t": "; ".join(f"{c}:{_cell(r.get(c))}" for c in columns)}
        for i, r in enumerate(sample)
    ]
    chosen: List[int] = []
    try:
        reply = await chat.complete(RANK_SYSTEM_PROMPT, json.dumps(compact, default=str), temperature=0)
        for n in extract_json(reply, list):
            if isinstance(n, int) and not isinstance(n, bool) and 0 <= n < len(sample) and n not in chosen:
                chosen.append(n)
            if len(chosen) >= MAX_EMBED_ROWS:
                break
    except Exception as exc:
        logger.warning("Row ranking failed, embedding the first rows: %s", exc)
        chosen = []

    if not chosen:
        return sample[:MAX_EMBED_ROWS], True
    return [sample[i] for i in chosen], False


async def embed_rows(
    embedder: Embedder,
    index: Optional[VectorIndex],
    dataset: str,
    source_url: str,
    columns: List[str],
    rows: List[Row],
) -> int:
    """Embed and upsert rows one at a time; returns how many were stored."""
    if index is None:
        return 0

    count = 0
    for i, row in enumerate(rows):
        text = row_text(columns, row)
        vec, debug = await embed_text(embedder, text)
        if vec is None or len(vec) != EMBED_DIMENSIONS:
            logger.warning("Skipping row %d: %s", i, debug if vec is None else f"{len(vec)} dims")
            continue

        point = VectorPoint(
            id="ds:" + fnv1a_base36(f"{dataset}:{i}:{text[:ID_TEXT_CHARS]}"),
            values=vec,
            metadata={"dataset": dataset, "url": source_url, "rowIndex": i, "row": row},
        )
        await index.upsert([point])
        count += 1
    return count


async def vector_search(embedder: Embedder, index: Optional[VectorIndex], q: str, k: Optional[int] = 5) -> VectorSearchResult:
    if index is None:
        return VectorSearchResult(warn="Vector index not configured.")
    if not q or not q.strip():
        return VectorSearchResult(warn="Query is empty or invalid")

    vec, debug = await embed_text(embedder, q)
    if vec is None:
        logger.error("Query embedding failed: %s", debug)
        return VectorSearchResult(warn="Could not embed query.", debug=debug)
    if len(vec) != EMBED_DIMENSIONS:
        return VectorSearchResult(
            warn=f"Wrong vector dimensions: expected {EMBED_DIMENSIONS}, got {len(vec)}",
            debug=debug,
        )

    top_k = clamp_top_k(k)
    try:
        matches: List[Dict[str, Any]] = await index.query(vec, top_k)
    except Exception as exc:
        logger.error("Vector query failed: %s", exc)
        return VectorSearchResult(warn="Vector search failed", debug=str(exc))

    logger.info("Vector search returned %d matches", len(matches))
    return VectorSearchResult(matches=[VectorMatch.model_validate(m) for m in matches])
