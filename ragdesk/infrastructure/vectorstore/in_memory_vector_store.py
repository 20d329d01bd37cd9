"""In-process vector store with cosine similarity.

Why: Same port and scope rules as Qdrant, for offline runs and tests.
"""

import math
from collections.abc import Sequence
from typing import Any

from ragdesk.application.ports.vector_store_port import (
    VectorFilter,
    VectorPoint,
    chunk_meta_from_payload,
    require_scope,
    search_hit_from_payload,
)
from ragdesk.domain.errors import DomainError, VectorStoreError
from ragdesk.domain.models import ChunkMeta, SearchHit
from ragdesk.domain.types import Result


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class InMemoryVectorStore:
    def __init__(self) -> None:
        self._dims: dict[str, int] = {}
        self._points: dict[str, dict[str, tuple[list[float], dict[str, Any]]]] = {}

    async def ensure_collection(self, name: str, dim: int) -> Result[None, DomainError]:
        if not name.strip():
            return Result.failure(VectorStoreError("collection name missing", code="COLLECTION_MISSING"))
        if dim <= 0:
            return Result.failure(
                VectorStoreError(f"embedding dim must be positive, got {dim}", code="EMBEDDING_DIM_INVALID")
            )
        existing = self._dims.get(name)
        if existing is not None and existing != dim:
            return Result.failure(
                VectorStoreError(f"collection '{name}' has dim {existing}, not {dim}", code="EMBEDDING_DIM_MISMATCH")
            )
        self._dims.setdefault(name, dim)
        self._points.setdefault(name, {})
        return Result.success(None)

    async def upsert(self, collection: str, points: Sequence[VectorPoint]) -> Result[None, DomainError]:
        if not points:
            return Result.success(None)
        store = self._points.get(collection)
        if store is None:
            return Result.failure(VectorStoreError(f"collection '{collection}' not found", code="NOT_FOUND"))
        dim = self._dims[collection]
        for p in points:
            if len(p.vector) != dim:
                return Result.failure(
                    VectorStoreError(f"point {p.id} has dim {len(p.vector)}, not {dim}", code="EMBEDDING_DIM_MISMATCH")
                )
        for p in points:
            store[p.id] = (list(p.vector), dict(p.payload))
        return Result.success(None)

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        flt: VectorFilter,
        score_threshold: float = 0.0,
    ) -> Result[list[SearchHit], DomainError]:
        require_scope(flt)
        store = self._points.get(collection, {})
        hits: list[SearchHit] = []
        for point_id, (vec, payload) in store.items():
            if any(str(payload.get(c.key, "")) != c.value for c in flt.must):
                continue
            score = cosine_similarity(vector, vec)
            if score_threshold > 0 and score < score_threshold:
                continue
            hits.append(search_hit_from_payload(point_id, score, payload))
        hits.sort(key=lambda h: h.score, reverse=True)
        return Result.success(hits[: max(top_k, 0)])

    async def load_chunks(
        self, collection: str, chunk_ids: Sequence[str]
    ) -> Result[dict[str, ChunkMeta], DomainError]:
        store = self._points.get(collection, {})
        out: dict[str, ChunkMeta] = {}
        for cid in chunk_ids:
            entry = store.get(cid)
            if entry is not None:
                out[cid] = chunk_meta_from_payload(cid, entry[1])
        return Result.success(out)

    def count(self, collection: str) -> int:
        return len(self._points.get(collection, {}))
