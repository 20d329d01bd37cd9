"""Embedding provider registry, deterministic offline provider and batching.

Why: Provider wird per Name gewählt; ohne Endpoint oder bei unbekanntem
     Namen greift der deterministische Fallback, damit Offline-Läufe und
     Tests ohne Netz funktionieren.
"""

from __future__ import annotations

import hashlib
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ragdesk.application.ports.embedding_port import EmbeddingPort
from ragdesk.config.logging import get_logger
from ragdesk.domain.errors import EmbeddingError

DEFAULT_EMBEDDING_MODEL = "fake-embedding-v1"
DEFAULT_EMBEDDING_DIM = 384
DEFAULT_BATCH_SIZE = 64

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "fake"
    endpoint: str = ""
    api_key: str = ""
    model: str = ""
    dim: int = DEFAULT_EMBEDDING_DIM
    timeout_ms: int = 15000


EmbeddingFactory = Callable[[EmbeddingConfig], EmbeddingPort]

_PROVIDERS: dict[str, EmbeddingFactory] = {}


def _provider_key(name: str) -> str:
    return name.strip().lower()


def register_embedding_provider(name: str, factory: EmbeddingFactory) -> None:
    key = _provider_key(name)
    if not key:
        raise ValueError("embedding provider name must not be empty")
    _PROVIDERS[key] = factory


def new_embedding_provider(cfg: EmbeddingConfig) -> EmbeddingPort:
    """Build the configured provider; unknown names fall back to deterministic vectors."""
    key = _provider_key(cfg.provider) or "fake"
    factory = _PROVIDERS.get(key)
    if factory is None:
        logger.warning("embedding_provider_unknown", provider=key, fallback="fake")
        return DeterministicEmbeddingAdapter(model=cfg.model or DEFAULT_EMBEDDING_MODEL, dim=cfg.dim)
    return factory(cfg)


class DeterministicEmbeddingAdapter:
    """Hash-seeded pseudo-random vectors; identical text gives identical vectors."""

    def __init__(self, model: str = DEFAULT_EMBEDDING_MODEL, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        if dim <= 0:
            dim = DEFAULT_EMBEDDING_DIM
        self.model = model
        self.dim = dim

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        rng = random.Random(int.from_bytes(digest[:8], "little"))
        return [rng.random() * 2 - 1 for _ in range(self.dim)]

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.vector_for(t) for t in texts]


class BatchingEmbedder:
    """Splits large inputs into fixed-size batches and checks every batch's count."""

    def __init__(self, inner: EmbeddingPort, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._inner = inner
        self._batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE

    @property
    def model(self) -> str:
        return self._inner.model

    @property
    def dim(self) -> int:
        return self._inner.dim

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        out: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            batch = list(texts[start : start + self._batch_size])
            vectors = await self._inner.embed(batch)
            if len(vectors) != len(batch):
                raise EmbeddingError(
                    f"embedding returned {len(vectors)} vectors for {len(batch)} inputs",
                    code="EMBEDDING_COUNT_MISMATCH",
                )
            out.extend(vectors)
        return out


def _deterministic(cfg: EmbeddingConfig) -> EmbeddingPort:
    return DeterministicEmbeddingAdapter(model=cfg.model or DEFAULT_EMBEDDING_MODEL, dim=cfg.dim)


def _openai_compatible(default_model: str) -> EmbeddingFactory:
    def factory(cfg: EmbeddingConfig) -> EmbeddingPort:
        if not cfg.endpoint.strip():
            logger.warning("embedding_endpoint_missing", provider=cfg.provider, fallback="fake")
            return _deterministic(cfg)
        from ragdesk.infrastructure.embeddings.openai_embedding_adapter import (
            OpenAIEmbeddingAdapter,
        )

        return OpenAIEmbeddingAdapter(
            base_url=cfg.endpoint.strip(),
            api_key=cfg.api_key,
            model=cfg.model or default_model,
            dim=cfg.dim,
            timeout_ms=cfg.timeout_ms,
        )

    return factory


register_embedding_provider("fake", _deterministic)
register_embedding_provider("template", _deterministic)
register_embedding_provider("openai", _openai_compatible("text-embedding-3-small"))
register_embedding_provider("http", _openai_compatible("text-embedding-3-small"))
register_embedding_provider("deepseek", _openai_compatible("deepseek-embedding"))
