"""Qdrant vector store adapter (async REST client).

Why: Adapter kapselt alle externen Typen und liefert nur Domain-Fehler
     als Result. Scope filters are enforced before any request is sent.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from importlib import import_module
from typing import Any

from ragdesk.application.ports.vector_store_port import (
    VectorFilter,
    VectorPoint,
    chunk_meta_from_payload,
    require_scope,
    search_hit_from_payload,
)
from ragdesk.config.logging import get_logger
from ragdesk.domain.errors import DomainError, VectorStoreError
from ragdesk.domain.models import ChunkMeta, SearchHit
from ragdesk.domain.types import Result

logger = get_logger(__name__)


@dataclass
class QdrantConfig:
    """Configuration for Qdrant client connection."""

    url: str = "http://localhost:6333"
    api_key: str | None = None
    timeout_s: int = 10


def _is_not_found(ex: Exception) -> bool:
    status = getattr(ex, "status_code", None)
    if status == 404:
        return True
    return "not found" in str(ex).lower()


class QdrantVectorStoreAdapter:
    """VectorStorePort over ``qdrant_client.AsyncQdrantClient``."""

    def __init__(self, cfg: QdrantConfig, client: Any | None = None) -> None:
        """Initialize adapter; ``client`` may be injected (tests).

        Raises:
            VectorStoreError: If qdrant-client is not available or init fails
        """
        self._cfg = cfg
        self._client = client if client is not None else self._init_client(cfg)

    def _init_client(self, cfg: QdrantConfig) -> Any:
        try:
            qdrant_client = import_module("qdrant_client")
            return qdrant_client.AsyncQdrantClient(
                url=cfg.url,
                api_key=cfg.api_key or None,
                timeout=cfg.timeout_s,
            )
        except Exception as ex:
            raise VectorStoreError(f"Qdrant init failed: {ex}") from ex

    async def ensure_collection(self, name: str, dim: int) -> Result[None, DomainError]:
        if not name.strip():
            return Result.failure(VectorStoreError("collection name missing", code="COLLECTION_MISSING"))
        if dim <= 0:
            return Result.failure(
                VectorStoreError(f"embedding dim must be positive, got {dim}", code="EMBEDDING_DIM_INVALID")
            )
        try:
            await self._client.get_collection(collection_name=name)
            return Result.success(None)
        except Exception as ex:  # noqa: BLE001
            if not _is_not_found(ex):
                return Result.failure(VectorStoreError(f"ensure_collection: {ex}"))

        try:
            models = import_module("qdrant_client.models")
            await self._client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(size=dim, distance=models.Distance.COSINE),
            )
            logger.info("qdrant_collection_created", collection=name, dim=dim)
            return Result.success(None)
        except Exception as ex:  # noqa: BLE001
            return Result.failure(VectorStoreError(f"create_collection: {ex}"))

    async def upsert(self, collection: str, points: Sequence[VectorPoint]) -> Result[None, DomainError]:
        if not points:
            return Result.success(None)
        try:
            models = import_module("qdrant_client.models")
            structs = [
                models.PointStruct(id=p.id, vector=list(p.vector), payload=dict(p.payload))
                for p in points
            ]
            await self._client.upsert(collection_name=collection, points=structs, wait=True)
            return Result.success(None)
        except Exception as ex:  # noqa: BLE001
            return Result.failure(VectorStoreError(f"upsert: {ex}"))

    def _build_filter(self, flt: VectorFilter) -> Any:
        models = import_module("qdrant_client.models")
        return models.Filter(
            must=[
                models.FieldCondition(key=c.key, match=models.MatchValue(value=c.value))
                for c in flt.must
            ]
        )

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        flt: VectorFilter,
        score_threshold: float = 0.0,
    ) -> Result[list[SearchHit], DomainError]:
        require_scope(flt)
        if top_k <= 0:
            return Result.success([])
        try:
            resp = await self._client.query_points(
                collection_name=collection,
                query=list(vector),
                limit=top_k,
                query_filter=self._build_filter(flt),
                score_threshold=score_threshold if score_threshold > 0 else None,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as ex:  # noqa: BLE001
            return Result.failure(VectorStoreError(f"search: {ex}"))

        hits = [
            search_hit_from_payload(str(p.id), float(p.score), dict(p.payload or {}))
            for p in resp.points
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return Result.success(hits)

    async def load_chunks(
        self, collection: str, chunk_ids: Sequence[str]
    ) -> Result[dict[str, ChunkMeta], DomainError]:
        ids = list(dict.fromkeys(cid for cid in chunk_ids if cid))
        if not ids:
            return Result.success({})
        try:
            records = await self._client.retrieve(
                collection_name=collection, ids=ids, with_payload=True, with_vectors=False
            )
        except Exception as ex:  # noqa: BLE001
            return Result.failure(VectorStoreError(f"load_chunks: {ex}"))

        out: dict[str, ChunkMeta] = {}
        for rec in records:
            meta = chunk_meta_from_payload(str(rec.id), dict(rec.payload or {}))
            out[meta.chunk_id] = meta
        return Result.success(out)
