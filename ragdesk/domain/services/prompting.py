# ragdesk/domain/services/prompting.py
# Pure domain services: no I/O, deterministic, no external libraries.
from __future__ import annotations

import hashlib
import unicodedata
from collections.abc import Mapping, Sequence

from ragdesk.domain.models import ChunkMeta, Reference, ScoredChunk
from ragdesk.domain.services.reranking import truncate_text

MAX_SNIPPET_CHARS = 1200
MAX_CONTEXT_BLOCKS = 12
MAX_BLOCKS_PER_DOC = 3
REFERENCE_SNIPPET_CHARS = 200

PROMPT_HEADER = (
    "Use the context to answer the question. "
    "If the context does not contain the answer, say you don't know.\n\n"
)
NO_CONTEXT = "(no context available)\n"


# ---------- Query ----------


def normalize_query(text: str) -> str:
    """Lowercase, keep letters/numbers, collapse everything else to one space."""
    if not text.strip():
        return ""
    out: list[str] = []
    space = False
    for ch in text.lower():
        cat = unicodedata.category(ch)
        if cat[0] in ("L", "N"):
            out.append(ch)
            space = False
        elif ch.isspace() or cat[0] in ("P", "S", "Z"):
            if not space:
                out.append(" ")
                space = True
    return "".join(out).strip()


def dedupe_queries(queries: Sequence[str]) -> list[str]:
    """Case-insensitive dedupe; empties dropped. Keeps the first raw query if all are empty."""
    seen: set[str] = set()
    out: list[str] = []
    for q in queries:
        q = q.strip()
        if not q:
            continue
        key = q.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(q)
    if not out and queries:
        return [queries[0]]
    return out


def align_query_weights(queries: Sequence[str], weights: Sequence[float]) -> list[float]:
    return [weights[i] if i < len(weights) and weights[i] > 0 else 1.0 for i in range(len(queries))]


# ---------- Context ----------


def normalize_for_prompt(text: str) -> str:
    return " ".join(text.split())


def content_fingerprint(text: str) -> str:
    return hashlib.sha256(normalize_for_prompt(text).lower().encode("utf-8")).hexdigest()


def select_context(
    ranked: Sequence[ScoredChunk], chunks: Mapping[str, ChunkMeta]
) -> list[ChunkMeta]:
    """Pick up to 12 distinct blocks, at most 3 per document, in rank order."""
    if not ranked or not chunks:
        return []
    seen: set[str] = set()
    per_doc: dict[str, int] = {}
    out: list[ChunkMeta] = []
    for item in ranked:
        meta = chunks.get(item.chunk_id)
        if meta is None or not meta.content.strip():
            continue
        key = content_fingerprint(meta.content)
        if key in seen:
            continue
        doc_id = meta.document_id.strip()
        if doc_id and per_doc.get(doc_id, 0) >= MAX_BLOCKS_PER_DOC:
            continue
        seen.add(key)
        if doc_id:
            per_doc[doc_id] = per_doc.get(doc_id, 0) + 1
        out.append(meta)
        if len(out) >= MAX_CONTEXT_BLOCKS:
            break
    return out


def format_context_block(index: int, meta: ChunkMeta) -> str:
    header = f"[{index}] doc={meta.document_id} chunk={meta.chunk_id}"
    if meta.section:
        header += f" section={meta.section}"
    if meta.page_no > 0:
        header += f" page={meta.page_no}"
    content = truncate_text(normalize_for_prompt(meta.content), MAX_SNIPPET_CHARS)
    return f"{header}\n{content}"


def build_prompt(
    question: str, ranked: Sequence[ScoredChunk], chunks: Mapping[str, ChunkMeta]
) -> str:
    parts = [PROMPT_HEADER, "Context:\n"]
    selected = select_context(ranked, chunks)
    for idx, meta in enumerate(selected, start=1):
        parts.append(format_context_block(idx, meta) + "\n")
    if not selected:
        parts.append(NO_CONTEXT)
    parts.append(f"\nQuestion: {question.strip()}\nAnswer:")
    return "".join(parts)


def build_references(
    ranked: Sequence[ScoredChunk], chunks: Mapping[str, ChunkMeta]
) -> list[Reference]:
    refs: list[Reference] = []
    for rank, item in enumerate(ranked, start=1):
        meta = chunks.get(item.chunk_id, ChunkMeta(chunk_id=item.chunk_id))
        refs.append(
            Reference(
                document_id=meta.document_id.strip() or item.hit.document_id,
                document_version_id=meta.document_version_id.strip()
                or item.hit.document_version_id,
                chunk_id=item.chunk_id,
                score=item.score,
                rank=rank,
                snippet=truncate_text(meta.content, REFERENCE_SNIPPET_CHARS),
            )
        )
    return refs
