"""Vector store port and its wire-level value types."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ragdesk.domain.errors import DomainError
from ragdesk.domain.models import ChunkMeta, SearchHit
from ragdesk.domain.types import Result

TENANT_KEY = "tenant_id"
KB_KEY = "kb_id"


@dataclass(frozen=True)
class VectorPoint:
    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorCondition:
    """Equality match on one payload key."""

    key: str
    value: str


@dataclass(frozen=True)
class VectorFilter:
    """Conjunction of equality conditions."""

    must: tuple[VectorCondition, ...] = ()

    @classmethod
    def scoped(cls, tenant_id: str, kb_id: str, *extra: VectorCondition) -> "VectorFilter":
        return cls(
            must=(VectorCondition(TENANT_KEY, tenant_id), VectorCondition(KB_KEY, kb_id), *extra)
        )

    def value_of(self, key: str) -> str:
        for cond in self.must:
            if cond.key == key:
                return cond.value
        return ""


def chunk_meta_from_payload(chunk_id: str, payload: dict[str, Any]) -> ChunkMeta:
    """Hydrate a ChunkMeta from a stored point payload (missing keys become empty)."""

    def text(key: str) -> str:
        value = payload.get(key)
        return "" if value is None else str(value)

    try:
        page_no = int(payload.get("page_no") or 0)
    except (TypeError, ValueError):
        page_no = 0
    return ChunkMeta(
        chunk_id=text("chunk_id") or chunk_id,
        document_id=text("document_id"),
        document_version_id=text("document_version_id"),
        kb_id=text(KB_KEY),
        content=text("content"),
        section=text("section"),
        page_no=page_no,
        source_uri=text("source_uri"),
    )


def search_hit_from_payload(point_id: str, score: float, payload: dict[str, Any]) -> SearchHit:
    return SearchHit(
        chunk_id=str(payload.get("chunk_id") or point_id),
        score=float(score),
        document_id=str(payload.get("document_id") or ""),
        document_version_id=str(payload.get("document_version_id") or ""),
        kb_id=str(payload.get(KB_KEY) or ""),
    )


def require_scope(flt: VectorFilter | None) -> VectorFilter:
    """Every search must be tenant- and KB-scoped; anything else is a caller bug."""
    if flt is None or not flt.value_of(TENANT_KEY).strip() or not flt.value_of(KB_KEY).strip():
        raise ValueError("vector search requires non-empty tenant_id and kb_id filter conditions")
    return flt


@runtime_checkable
class VectorStorePort(Protocol):
    async def ensure_collection(self, name: str, dim: int) -> Result[None, DomainError]: ...

    async def upsert(
        self, collection: str, points: Sequence[VectorPoint]
    ) -> Result[None, DomainError]: ...

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int,
        flt: VectorFilter,
        score_threshold: float = 0.0,
    ) -> Result[list[SearchHit], DomainError]: ...

    async def load_chunks(
        self, collection: str, chunk_ids: Sequence[str]
    ) -> Result[dict[str, ChunkMeta], DomainError]: ...
