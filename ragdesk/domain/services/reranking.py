# ragdesk/domain/services/reranking.py
# Pure domain services: no I/O, deterministic, no external libraries.
"""LLM cross-encoder rerank helpers.

Why: When score-based ranking is not confident enough, a generation model
     is asked to order the top candidates. Prompt building, response parsing
     and applying the order are pure and live here; the call itself is
     made by the query use case.
"""
from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence

from ragdesk.domain.models import ChunkMeta, ScoredChunk

CROSS_ENCODER_TOP_N = 8
CROSS_TIMEOUT_MIN_MS = 1200
CROSS_TIMEOUT_MAX_MS = 2500
CROSS_PASSAGE_CHARS = 400
CROSS_MAX_TOKENS = 256
CROSS_SYSTEM_PROMPT = "You are a ranking model that orders passages by relevance to a question."

_SPLIT_RE = re.compile(r"[\n\r,; ]+")


def truncate_text(text: str, limit: int) -> str:
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_cross_encoder_prompt(
    question: str,
    ranked: Sequence[ScoredChunk],
    chunks: Mapping[str, ChunkMeta],
) -> str:
    parts = [
        "Rank the following passages by relevance to the question. ",
        "Return a JSON array of chunk_id in descending order.\n\n",
        f"Question: {question.strip()}\n\nPassages:\n",
    ]
    for idx, item in enumerate(ranked, start=1):
        meta = chunks.get(item.chunk_id, ChunkMeta(chunk_id=item.chunk_id))
        header = f"[{idx}] chunk_id={item.chunk_id}"
        if meta.section:
            header += f" section={meta.section}"
        parts.append(header + "\n")
        parts.append(truncate_text(meta.content, CROSS_PASSAGE_CHARS) + "\n\n")
    return "".join(parts)


def _json_string_list(text: str) -> list[str] | None:
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return [str(item) for item in parsed if isinstance(item, (str, int))]


def _sanitize(items: Sequence[str]) -> list[str]:
    return [item.strip() for item in items if item.strip()]


def parse_rerank_order(text: str) -> list[str]:
    """Parse a model reply into an ordered list of chunk ids.

    Tries, in order: the whole reply as JSON array, the slice between the
    first ``[`` and the last ``]``, then a plain split on separators.
    """
    text = text.strip()
    if not text:
        return []
    parsed = _json_string_list(text)
    if parsed is not None:
        return _sanitize(parsed)
    start, end = text.find("["), text.rfind("]")
    if start >= 0 and end > start:
        parsed = _json_string_list(text[start : end + 1])
        if parsed is not None:
            return _sanitize(parsed)
    return _sanitize(_SPLIT_RE.split(text))


def apply_rerank_order(order: Sequence[str], ranked: Sequence[ScoredChunk]) -> list[ScoredChunk]:
    """Recognized ids first (in model order), everything else after in prior order."""
    by_id = {item.chunk_id: item for item in ranked}
    out: list[ScoredChunk] = []
    seen: set[str] = set()
    for raw in order:
        cid = raw.strip()
        if cid in by_id and cid not in seen:
            out.append(by_id[cid])
            seen.add(cid)
    out.extend(item for item in ranked if item.chunk_id not in seen)
    return out


def cross_encoder_timeout_ms(llm_timeout_ms: int, remaining_ms: float | None) -> int:
    """llm_timeout/5 clamped to [1200, 2500] ms, capped by the remaining budget."""
    timeout = min(max(llm_timeout_ms // 5, CROSS_TIMEOUT_MIN_MS), CROSS_TIMEOUT_MAX_MS)
    if remaining_ms is not None:
        timeout = min(timeout, int(remaining_ms))
    return max(timeout, 0)
