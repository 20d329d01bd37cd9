from __future__ import annotations

import hashlib
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ragdesk.domain.models import DocChunk, DocumentBlock, DocumentMeta
from ragdesk.domain.services.tokenizer import detect_language, estimate_tokens, token_spans

MIN_CHUNK_TOKENS = 64
MAX_CHUNK_TOKENS = 8192
DEFAULT_CHUNK_TOKENS = 800
DEFAULT_OVERLAP_TOKENS = 100

# Satzgrenzen: Zeichen bleibt am vorherigen Segment, Zeilenumbruch trennt
_SEGMENT_RE = re.compile(r"[^.!?;。！？；\n]*[.!?;。！？；]+|[^\n]+")


@dataclass(frozen=True)
class ChunkingParams:
    chunk_size: int = DEFAULT_CHUNK_TOKENS
    overlap: int = DEFAULT_OVERLAP_TOKENS

    def clamped(self) -> ChunkingParams:
        size = min(max(self.chunk_size, MIN_CHUNK_TOKENS), MAX_CHUNK_TOKENS)
        overlap = min(max(self.overlap, 0), size - 1)
        return ChunkingParams(chunk_size=size, overlap=overlap)


def deterministic_chunk_id(document_version_id: str, chunk_index: int) -> str:
    """Same (version, index) always yields the same id, so re-ingestion is idempotent."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{document_version_id}:{chunk_index}"))


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def split_segments(text: str) -> list[str]:
    """Sentence-like segments; boundary punctuation stays with its segment."""
    return [m.group(0).strip() for m in _SEGMENT_RE.finditer(text) if m.group(0).strip()]


def hard_split(segment: str, max_tokens: int) -> list[str]:
    """Cut an oversized segment into pieces of at most ``max_tokens`` tokens."""
    spans = token_spans(segment)
    if len(spans) <= max_tokens:
        return [segment]
    pieces: list[str] = []
    for i in range(0, len(spans), max_tokens):
        window = spans[i : i + max_tokens]
        pieces.append(segment[window[0].start : window[-1].end])
    return pieces


def tail_tokens(text: str, n: int) -> str:
    """Return the suffix of ``text`` that starts at its n-th last token."""
    if n <= 0:
        return ""
    spans = token_spans(text)
    if not spans:
        return ""
    return text[spans[max(0, len(spans) - n)].start :].strip()


@dataclass
class _Packer:
    params: ChunkingParams
    parts: list[str] = field(default_factory=list)
    tokens: int = 0
    section: str = ""
    page_no: int = 0
    finished: list[tuple[str, str, int]] = field(default_factory=list)

    def add(self, segment: str, seg_tokens: int) -> None:
        if self.parts and self.tokens + seg_tokens > self.params.chunk_size:
            tail = self.flush()
            if tail:
                tail_count = estimate_tokens(tail)
                # Overlap nur, wenn danach noch Platz für das nächste Segment bleibt
                if tail_count + seg_tokens <= self.params.chunk_size:
                    self.parts = [tail]
                    self.tokens = tail_count
        self.parts.append(segment)
        self.tokens += seg_tokens

    def flush(self) -> str:
        content = " ".join(self.parts).strip()
        self.parts = []
        self.tokens = 0
        if not content:
            return ""
        self.finished.append((content, self.section, self.page_no))
        return tail_tokens(content, self.params.overlap)


def _is_boundary(packer: _Packer, block: DocumentBlock) -> bool:
    if block.page_no != packer.page_no:
        return True
    return bool(packer.section and block.section and packer.section != block.section)


def build_chunks(
    blocks: Sequence[DocumentBlock],
    meta: DocumentMeta,
    document_version_id: str,
    params: ChunkingParams | None = None,
    now: datetime | None = None,
) -> list[DocChunk]:
    """Pack normalized blocks into token-bounded, overlap-aware chunks.

    - structural boundary (page change, section change with both sides set)
      flushes the running chunk without carrying overlap across the boundary
    - segments over budget are hard-split on token spans
    - on a budget flush the trailing ``overlap`` tokens seed the next chunk
    """
    p = (params or ChunkingParams()).clamped()
    packer = _Packer(params=p)
    started = False

    for block in blocks:
        if started and _is_boundary(packer, block):
            packer.flush()
        if not packer.parts:
            packer.section = block.section
            packer.page_no = block.page_no
        elif not packer.section and block.section:
            packer.section = block.section
        started = True
        for segment in split_segments(block.text):
            for piece in hard_split(segment, p.chunk_size):
                packer.add(piece, estimate_tokens(piece))
    packer.flush()

    created_at = now or datetime.now(timezone.utc)
    out: list[DocChunk] = []
    for content, section, page_no in packer.finished:
        idx = len(out)
        out.append(
            DocChunk(
                id=deterministic_chunk_id(document_version_id, idx),
                chunk_index=idx,
                content=content,
                token_count=estimate_tokens(content),
                content_hash=sha256_hex(content),
                language=detect_language(content),
                section=section,
                page_no=page_no,
                source_uri=meta.source_uri,
                created_at=created_at,
            )
        )
    return out
