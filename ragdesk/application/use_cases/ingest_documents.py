from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ...config.logging import get_logger
from ...domain.errors import ConflictError, DocumentError, DomainError, EmbeddingError, ValidationError
from ...domain.models import (
    DOCUMENT_STATUS_FAILED,
    DOCUMENT_STATUS_PROCESSING,
    DOCUMENT_STATUS_READY,
    SOURCE_URL,
    DocChunk,
    Document,
    DocumentVersion,
    EmbeddedChunk,
    IngestionJob,
)
from ...domain.services.chunking import ChunkingParams, build_chunks
from ...domain.services.normalization import (
    ContentNormalizer,
    DefaultNormalizer,
    normalize_source_type,
)
from ...domain.types import Result
from ..budget import Deadline
from ..dto.ingest_dto import IngestionOptions, UploadDocumentRequest, UploadResult
from ..ports.document_parser_port import DocumentParserPort
from ..ports.embedding_port import EmbeddingPort
from ..ports.knowledge_repo_port import DocumentRepositoryPort
from ..ports.vector_store_port import KB_KEY, TENANT_KEY, VectorPoint, VectorStorePort
from ..ports.work_queue_port import WorkQueuePort

logger = get_logger(__name__)


def chunk_payload(
    tenant_id: str, kb_id: str, document_id: str, document_version_id: str, chunk: DocChunk
) -> dict[str, Any]:
    """Point payload stored next to every vector; the query side hydrates from it."""
    return {
        TENANT_KEY: tenant_id,
        KB_KEY: kb_id,
        "document_id": document_id,
        "document_version_id": document_version_id,
        "chunk_id": chunk.id,
        "chunk_index": chunk.chunk_index,
        "token_count": chunk.token_count,
        "content_hash": chunk.content_hash,
        "language": chunk.language,
        "content": chunk.content,
        "section": chunk.section,
        "page_no": chunk.page_no,
        "source_uri": chunk.source_uri,
        "created_at": int(chunk.created_at.timestamp() * 1000),
    }


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _content_missing(content: str | bytes) -> bool:
    if isinstance(content, bytes):
        return len(content) == 0
    return not content.strip()


@dataclass
class IngestDocuments:
    """Upload, (re)process and reindex documents of one knowledge base.

    parse → normalize → chunk → embed → ensure collection → upsert, with
    document and version status tracked in the catalog.
    """

    repo: DocumentRepositoryPort
    parser: DocumentParserPort
    embedding: EmbeddingPort
    vector_store: VectorStorePort
    queue: WorkQueuePort | None = None
    normalizer: ContentNormalizer = field(default_factory=DefaultNormalizer)
    options: IngestionOptions = field(default_factory=IngestionOptions)
    id_factory: Callable[[], str] = _new_id
    clock: Callable[[], datetime] = _utcnow

    async def upload(self, req: UploadDocumentRequest) -> Result[UploadResult, DomainError]:
        tenant_id = req.tenant_id.strip()
        kb_id = req.kb_id.strip()
        try:
            if not tenant_id:
                raise ValidationError("tenant_id missing", code="TENANT_MISSING")
            if not kb_id:
                raise ValidationError("kb_id missing", code="KB_ID_MISSING")
            if _content_missing(req.content):
                raise DocumentError("document content missing", code="DOC_CONTENT_MISSING")

            source_type = normalize_source_type(req.source_type)
            source_uri = req.source_uri.strip()
            if not source_uri and source_type == SOURCE_URL and isinstance(req.content, str):
                source_uri = req.content.strip()

            doc = await self.repo.create_document(
                Document(
                    id=self.id_factory(),
                    tenant_id=tenant_id,
                    kb_id=kb_id,
                    title=req.title.strip(),
                    source_type=source_type,
                    status=DOCUMENT_STATUS_PROCESSING,
                )
            )
            version = await self.repo.create_version(
                DocumentVersion(
                    id=self.id_factory(),
                    tenant_id=tenant_id,
                    document_id=doc.id,
                    version=1,
                    raw_content=req.content,
                    source_uri=source_uri,
                )
            )
            return await self._dispatch(
                IngestionJob(
                    tenant_id=tenant_id,
                    kb_id=kb_id,
                    document_id=doc.id,
                    document_version_id=version.id,
                    fallback_version=0,
                )
            )
        except DomainError as ex:
            logger.warning("document_upload_failed", tenant_id=tenant_id, kb_id=kb_id, error=str(ex))
            return Result.failure(ex)

    async def reindex(self, tenant_id: str, document_id: str) -> Result[UploadResult, DomainError]:
        """Re-ingest the current raw content as a new version."""
        try:
            if not tenant_id.strip():
                raise ValidationError("tenant_id missing", code="TENANT_MISSING")
            doc = await self.repo.get_document(tenant_id, document_id)
            versions = await self.repo.list_versions(tenant_id, document_id)
            if not versions:
                raise DocumentError(f"document {document_id} has no versions", code="DOC_VERSION_MISSING")
            source = next((v for v in versions if v.version == doc.current_version), versions[-1])
            await self.repo.update_document_state(
                tenant_id, doc.id, DOCUMENT_STATUS_PROCESSING, doc.current_version
            )
            version = await self.repo.create_version(
                DocumentVersion(
                    id=self.id_factory(),
                    tenant_id=tenant_id,
                    document_id=doc.id,
                    version=versions[-1].version + 1,
                    raw_content=source.raw_content,
                    source_uri=source.source_uri,
                )
            )
            return await self._dispatch(
                IngestionJob(
                    tenant_id=tenant_id,
                    kb_id=doc.kb_id,
                    document_id=doc.id,
                    document_version_id=version.id,
                    fallback_version=doc.current_version,
                )
            )
        except DomainError as ex:
            logger.warning("document_reindex_failed", tenant_id=tenant_id, document_id=document_id, error=str(ex))
            return Result.failure(ex)

    async def rollback(self, tenant_id: str, document_id: str, version: int) -> Result[Document, DomainError]:
        """Point the document back at an earlier ready version.

        Only the catalog pointer moves; no points are re-embedded or deleted.
        """
        try:
            if not tenant_id.strip():
                raise ValidationError("tenant_id missing", code="TENANT_MISSING")
            if not document_id.strip():
                raise ValidationError("document id missing", code="DOC_ID_MISSING")
            if version <= 0:
                raise ValidationError(f"invalid version {version}", code="DOC_VERSION_INVALID")
            doc = await self.repo.get_document(tenant_id, document_id.strip())
            target = await self.repo.get_version_by_number(tenant_id, doc.id, version)
            if target.status != DOCUMENT_STATUS_READY:
                raise ConflictError(
                    f"version {version} is {target.status}, not ready", code="DOC_VERSION_NOT_READY"
                )
            await self.repo.update_document_state(tenant_id, doc.id, DOCUMENT_STATUS_READY, version)
            logger.info("document_rolled_back", tenant_id=tenant_id, document_id=doc.id, version=version)
            return Result.success(await self.repo.get_document(tenant_id, doc.id))
        except DomainError as ex:
            logger.warning("document_rollback_failed", tenant_id=tenant_id, document_id=document_id, error=str(ex))
            return Result.failure(ex)

    async def _dispatch(self, job: IngestionJob) -> Result[UploadResult, DomainError]:
        if self.options.async_enabled and self.queue is not None:
            queued = await self.queue.enqueue(job)
            if queued.ok:
                logger.info(
                    "ingestion_job_queued",
                    document_id=job.document_id,
                    document_version_id=job.document_version_id,
                    message_id=queued.value,
                )
                return Result.success(
                    UploadResult(
                        document=await self.repo.get_document(job.tenant_id, job.document_id),
                        version=await self.repo.get_version(job.tenant_id, job.document_version_id),
                        queued=True,
                    )
                )
            # Queue nicht erreichbar: synchron weiter
            logger.warning("ingestion_enqueue_failed", error=str(queued.error), fallback="inline")

        count = await self.process(job)
        return Result.success(
            UploadResult(
                document=await self.repo.get_document(job.tenant_id, job.document_id),
                version=await self.repo.get_version(job.tenant_id, job.document_version_id),
                chunk_count=count,
            )
        )

    async def process(self, job: IngestionJob) -> int:
        """Ingest one document version; returns the number of chunks written.

        Raises the failing DomainError after marking version and document as
        failed (the document keeps ``job.fallback_version`` as current).
        """
        tenant_id = job.tenant_id
        version = await self.repo.get_version(tenant_id, job.document_version_id)
        doc = await self.repo.get_document(tenant_id, job.document_id)
        try:
            count = await self._ingest_version(doc, version)
        except Exception as ex:
            await self.repo.update_version_status(tenant_id, version.id, DOCUMENT_STATUS_FAILED, str(ex))
            await self.repo.update_document_state(
                tenant_id, doc.id, DOCUMENT_STATUS_FAILED, job.fallback_version
            )
            logger.error(
                "document_ingest_failed",
                tenant_id=tenant_id,
                document_id=doc.id,
                document_version_id=version.id,
                error=str(ex),
            )
            raise

        await self.repo.update_version_status(tenant_id, version.id, DOCUMENT_STATUS_READY)
        await self.repo.update_document_state(tenant_id, doc.id, DOCUMENT_STATUS_READY, version.version)
        logger.info(
            "document_ingested",
            tenant_id=tenant_id,
            document_id=doc.id,
            document_version_id=version.id,
            version=version.version,
            chunks=count,
        )
        return count

    async def _ingest_version(self, doc: Document, version: DocumentVersion) -> int:
        # 1) Parsen + Normalisieren
        parsed = await self.parser.parse(
            version.raw_content, doc.source_type, title=doc.title, source_uri=version.source_uri
        )
        if not doc.title.strip() and parsed.meta.title:
            await self.repo.update_document_title(doc.tenant_id, doc.id, parsed.meta.title)
        normalized = self.normalizer.normalize(parsed, doc.source_type)

        # 2) Chunken (pure Domain)
        params = ChunkingParams(chunk_size=self.options.chunk_size, overlap=self.options.chunk_overlap)
        chunks = build_chunks(normalized.blocks, normalized.meta, version.id, params, now=self.clock())
        if not chunks:
            raise DocumentError("document produced no chunks", code="DOC_CHUNKS_EMPTY")

        # 3) Embeddings; Anzahl muss exakt passen, sonst kein Write
        vectors = await Deadline().run(
            self.embedding.embed([c.content for c in chunks]),
            self.options.embedding_timeout_ms,
            "embed",
        )
        if len(vectors) != len(chunks):
            raise EmbeddingError(
                f"embedding returned {len(vectors)} vectors for {len(chunks)} chunks",
                code="EMBEDDING_COUNT_MISMATCH",
            )

        embedded = [EmbeddedChunk(chunk=chunk, vector=list(vec)) for chunk, vec in zip(chunks, vectors)]

        # 4) Persistenz im Vector Store
        collection = self.options.collection
        (await self.vector_store.ensure_collection(collection, len(embedded[0].vector))).unwrap()
        points = [
            VectorPoint(
                id=item.chunk.id,
                vector=item.vector,
                payload=chunk_payload(doc.tenant_id, doc.kb_id, doc.id, version.id, item.chunk),
            )
            for item in embedded
        ]
        (await self.vector_store.upsert(collection, points)).unwrap()
        return len(chunks)
