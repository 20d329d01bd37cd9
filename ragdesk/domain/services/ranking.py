# ragdesk/domain/services/ranking.py
# Pure domain services: no I/O, deterministic, no external libraries.
from __future__ import annotations

import re
from collections.abc import Sequence

from ragdesk.domain.models import ScoredChunk

QUERY_TOKEN_LIMIT = 64
CONTENT_TOKEN_LIMIT = 256
SECTION_BOOST = 1.2
CONFIDENCE_TOP_N = 3

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def fuse(vector_score: float, text_score: float, weight: float) -> float:
    """
    Weighted combination of vector similarity and lexical overlap.

    >>> fuse(0.8, 0.2, 0.0)
    0.8
    >>> fuse(0.8, 0.2, 1.0)
    0.2
    """
    if weight <= 0:
        return vector_score
    if weight >= 1:
        return text_score
    return vector_score * (1 - weight) + text_score * weight


def token_set(text: str, limit: int) -> set[str]:
    """Lowercased letter/number runs of length >= 2, at most ``limit`` of them."""
    if limit <= 0:
        limit = QUERY_TOKEN_LIMIT
    out: set[str] = set()
    count = 0
    for token in _WORD_RE.findall(text.lower()):
        if len(token) < 2:
            continue
        out.add(token)
        count += 1
        if count >= limit:
            break
    return out


def overlap_score(query: str, content: str) -> float:
    """|query tokens ∩ content tokens| / |query tokens|."""
    q_tokens = token_set(query, QUERY_TOKEN_LIMIT)
    if not q_tokens:
        return 0.0
    c_tokens = token_set(content, CONTENT_TOKEN_LIMIT)
    if not c_tokens:
        return 0.0
    return len(q_tokens & c_tokens) / len(q_tokens)


def text_score(query: str, content: str, section: str = "") -> float:
    """Body overlap, or boosted section overlap if that is higher."""
    score = overlap_score(query, content)
    section_score = overlap_score(query, section) if section else 0.0
    if section_score > 0:
        score = max(score, section_score * SECTION_BOOST)
    return score


def rank_and_filter(items: Sequence[ScoredChunk], top_k: int) -> list[ScoredChunk]:
    """Dedupe by chunk id (max score wins), sort descending, truncate to top_k.

    Ties keep first-seen order so the result is deterministic.
    """
    best: dict[str, ScoredChunk] = {}
    for item in items:
        if not item.chunk_id:
            continue
        prev = best.get(item.chunk_id)
        if prev is None or item.score > prev.score:
            best[item.chunk_id] = item
    merged = sorted(best.values(), key=lambda c: c.score, reverse=True)
    if top_k > 0:
        merged = merged[:top_k]
    return merged


def compute_confidence(ranked: Sequence[ScoredChunk], top_k: int) -> float:
    """0.8 * mean(top-3 scores) + 0.2 * coverage, clamped to [0, 1]."""
    if not ranked:
        return 0.0
    head = ranked[:CONFIDENCE_TOP_N]
    avg = sum(c.score for c in head) / len(head)
    coverage = 1.0
    if top_k > 0:
        coverage = min(1.0, len(ranked) / top_k)
    return clamp(0.8 * avg + 0.2 * coverage, 0.0, 1.0)


def derive_retrieve_threshold(confidence_threshold: float) -> float:
    """Per-hit floor for retrieval, derived from the answer threshold (max 0.2)."""
    if confidence_threshold <= 0:
        return 0.0
    return min(confidence_threshold * 0.2, 0.2)
