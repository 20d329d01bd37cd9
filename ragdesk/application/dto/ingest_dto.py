from __future__ import annotations

from dataclasses import dataclass

from ragdesk.domain.models import Document, DocumentVersion


@dataclass(frozen=True)
class UploadDocumentRequest:
    """
    DTO for uploading one document into a knowledge base.

    - content: raw text, a URL (source_type "url") or binary bytes/base64 (pdf, doc, docx)
    - title: optional; inferred from the first meaningful line when empty
    """

    tenant_id: str
    kb_id: str
    content: str | bytes
    source_type: str = "text"
    title: str = ""
    source_uri: str = ""


@dataclass(frozen=True)
class UploadResult:
    document: Document
    version: DocumentVersion
    chunk_count: int = 0
    queued: bool = False


@dataclass(frozen=True)
class IngestionOptions:
    collection: str = "ragdesk_chunks"
    chunk_size: int = 800
    chunk_overlap: int = 100
    embedding_timeout_ms: int = 15000
    async_enabled: bool = False
