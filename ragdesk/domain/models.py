# ragdesk/domain/models.py
# Domain models must be pure (no I/O, no external libs)
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# Source types understood by the parser (after normalization)
SOURCE_TEXT = "text"
SOURCE_MARKDOWN = "markdown"
SOURCE_HTML = "html"
SOURCE_DOC = "doc"
SOURCE_DOCX = "docx"
SOURCE_PDF = "pdf"
SOURCE_URL = "url"

DOCUMENT_STATUS_UPLOADED = "uploaded"
DOCUMENT_STATUS_PROCESSING = "processing"
DOCUMENT_STATUS_READY = "ready"
DOCUMENT_STATUS_FAILED = "failed"


@dataclass
class DocumentMeta:
    """Per-document metadata; ``title`` may be filled in once by inference."""

    title: str = ""
    source_uri: str = ""
    source_type: str = SOURCE_TEXT


@dataclass(frozen=True)
class DocumentBlock:
    """Intermediate parse unit. Discarded after chunking."""

    text: str
    section: str = ""
    page_no: int = 0


@dataclass
class ParsedDocument:
    meta: DocumentMeta
    blocks: list[DocumentBlock] = field(default_factory=list)


@dataclass(frozen=True)
class DocChunk:
    """
    Immutable, token-bounded passage of one document version.

    - id:            uuid5 of (document_version_id, chunk_index), stable across re-ingestion
    - content_hash:  sha256 hex of ``content``
    - language:      "zh", "en" or "" (heuristic)
    """

    id: str
    chunk_index: int
    content: str
    token_count: int
    content_hash: str
    language: str
    section: str
    page_no: int
    source_uri: str
    created_at: datetime


@dataclass(frozen=True)
class EmbeddedChunk:
    chunk: DocChunk
    vector: list[float]


@dataclass(frozen=True)
class SearchHit:
    """One vector-store candidate, identifiers taken from the point payload."""

    chunk_id: str
    score: float
    document_id: str = ""
    document_version_id: str = ""
    kb_id: str = ""


@dataclass(frozen=True)
class ScoredChunk:
    """A candidate with its vector, lexical and fused scores."""

    hit: SearchHit
    vector_score: float
    text_score: float = 0.0
    score: float = 0.0

    @property
    def chunk_id(self) -> str:
        return self.hit.chunk_id


@dataclass(frozen=True)
class ChunkMeta:
    chunk_id: str
    document_id: str = ""
    document_version_id: str = ""
    kb_id: str = ""
    content: str = ""
    section: str = ""
    page_no: int = 0
    source_uri: str = ""


@dataclass(frozen=True)
class Reference:
    """Citation surfaced to the caller."""

    document_id: str
    document_version_id: str
    chunk_id: str
    score: float
    rank: int
    snippet: str


@dataclass(frozen=True)
class BotKnowledgeBase:
    kb_id: str
    weight: float = 1.0
    priority: int = 0


@dataclass(frozen=True)
class IngestionJob:
    """Queue payload identifying a document version to (re)ingest."""

    tenant_id: str
    kb_id: str
    document_id: str
    document_version_id: str
    fallback_version: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "kb_id": self.kb_id,
            "document_id": self.document_id,
            "document_version_id": self.document_version_id,
            "fallback_version": self.fallback_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> IngestionJob:
        return cls(
            tenant_id=str(data.get("tenant_id") or ""),
            kb_id=str(data.get("kb_id") or ""),
            document_id=str(data.get("document_id") or ""),
            document_version_id=str(data.get("document_version_id") or ""),
            fallback_version=int(data.get("fallback_version") or 0),  # type: ignore[arg-type]
        )


@dataclass
class Document:
    id: str
    tenant_id: str
    kb_id: str
    title: str
    source_type: str
    status: str = DOCUMENT_STATUS_UPLOADED
    current_version: int = 0


@dataclass
class DocumentVersion:
    """Raw content of one document revision. Binary sources are kept as bytes."""

    id: str
    tenant_id: str
    document_id: str
    version: int
    raw_content: str | bytes
    source_uri: str = ""
    status: str = DOCUMENT_STATUS_PROCESSING
    error_reason: str = ""
