"""Application settings with environment-driven configuration.

Why: Einzige Stelle mit Env; alle anderen Schichten bekommen fertige
     Optionen per Dependency Injection.
"""

import os
from dataclasses import dataclass, field

from ragdesk.application.dto.ingest_dto import IngestionOptions
from ragdesk.application.dto.query_dto import (
    DEFAULT_REFUSAL_MESSAGE,
    DEFAULT_SYSTEM_PROMPT,
    RAGOptions,
)
from ragdesk.domain.services.ranking import clamp


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def resolve_api_key(explicit: str, provider: str) -> str:
    """explicit → ``<NAME>_API_KEY`` → ``RAGDESK_<NAME>_API_KEY`` → ``RAGDESK_API_KEY``."""
    if explicit.strip():
        return explicit.strip()
    name = provider.strip().upper()
    candidates = [f"{name}_API_KEY", f"RAGDESK_{name}_API_KEY"] if name else []
    candidates.append("RAGDESK_API_KEY")
    for var in candidates:
        value = os.getenv(var, "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class AppSettings:
    """Application settings loaded from environment variables.

    This is the ONLY place where environment variables are read.
    Clamping happens when options are handed out, so raw values stay visible.
    """

    # ===== Logging =====
    log_level: str = field(default_factory=lambda: os.getenv("RAGDESK_LOG_LEVEL", "INFO").upper())
    log_json: bool = field(default_factory=lambda: _flag("RAGDESK_LOG_JSON"))
    app_env: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))

    # ===== Vector Store Configuration =====
    vector_backend: str = field(
        default_factory=lambda: os.getenv("RAGDESK_VECTOR_BACKEND", "qdrant").strip().lower()
    )
    # Supported: "qdrant" | "memory"

    qdrant_url: str = field(
        default_factory=lambda: os.getenv("QDRANT_URL", "http://localhost:6333")
    )
    qdrant_api_key: str = field(default_factory=lambda: os.getenv("QDRANT_API_KEY", ""))
    qdrant_timeout_s: int = field(default_factory=lambda: int(os.getenv("QDRANT_TIMEOUT_S", "10")))
    collection: str = field(
        default_factory=lambda: os.getenv("RAGDESK_VECTOR_COLLECTION", "ragdesk_chunks")
    )

    # ===== Embedding Configuration =====
    embedding_provider: str = field(
        default_factory=lambda: os.getenv("RAGDESK_EMBEDDING_PROVIDER", "fake")
    )
    embedding_endpoint: str = field(
        default_factory=lambda: os.getenv("RAGDESK_EMBEDDING_ENDPOINT", "")
    )
    embedding_api_key: str = field(
        default_factory=lambda: os.getenv("RAGDESK_EMBEDDING_API_KEY", "")
    )
    embedding_model: str = field(default_factory=lambda: os.getenv("RAGDESK_EMBEDDING_MODEL", ""))
    embedding_dim: int = field(default_factory=lambda: int(os.getenv("RAGDESK_EMBEDDING_DIM", "384")))
    embedding_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_EMBEDDING_TIMEOUT_MS", "15000"))
    )
    embedding_batch_size: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_EMBEDDING_BATCH_SIZE", "64"))
    )

    # ===== LLM Configuration =====
    llm_provider: str = field(default_factory=lambda: os.getenv("RAGDESK_LLM_PROVIDER", "fake"))
    llm_endpoint: str = field(default_factory=lambda: os.getenv("RAGDESK_LLM_ENDPOINT", ""))
    llm_api_key: str = field(default_factory=lambda: os.getenv("RAGDESK_LLM_API_KEY", ""))
    llm_model: str = field(default_factory=lambda: os.getenv("RAGDESK_LLM_MODEL", ""))
    llm_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_LLM_TIMEOUT_MS", "15000"))
    )
    llm_temperature: float = field(
        default_factory=lambda: float(os.getenv("RAGDESK_LLM_TEMPERATURE", "0.2"))
    )
    llm_max_tokens: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_LLM_MAX_TOKENS", "512"))
    )
    system_prompt: str = field(
        default_factory=lambda: os.getenv("RAGDESK_SYSTEM_PROMPT", "") or DEFAULT_SYSTEM_PROMPT
    )
    refusal_message: str = field(
        default_factory=lambda: os.getenv("RAGDESK_REFUSAL_MESSAGE", "") or DEFAULT_REFUSAL_MESSAGE
    )

    # ===== Chunking =====
    chunk_size: int = field(default_factory=lambda: int(os.getenv("RAGDESK_CHUNK_SIZE", "800")))
    chunk_overlap: int = field(default_factory=lambda: int(os.getenv("RAGDESK_CHUNK_OVERLAP", "100")))

    # ===== RAG Query =====
    rag_top_k: int = field(default_factory=lambda: int(os.getenv("RAGDESK_RAG_TOP_K", "5")))
    rag_score_threshold: float = field(
        default_factory=lambda: float(os.getenv("RAGDESK_RAG_SCORE_THRESHOLD", "0.2"))
    )
    rag_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_RAG_TIMEOUT_MS", "20000"))
    )
    retrieve_timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_RETRIEVE_TIMEOUT_MS", "8000"))
    )
    retrieve_concurrency: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_RETRIEVE_CONCURRENCY", "8"))
    )
    rerank_weight: float = field(
        default_factory=lambda: float(os.getenv("RAGDESK_RERANK_WEIGHT", "0.3"))
    )

    # ===== Ingestion / Work Queue =====
    ingestion_async: bool = field(default_factory=lambda: _flag("RAGDESK_INGESTION_ASYNC"))
    workqueue_backend: str = field(
        default_factory=lambda: os.getenv("RAGDESK_WORKQUEUE_BACKEND", "memory").strip().lower()
    )
    # Supported: "redis" | "memory"

    redis_url: str = field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    ingestion_max_retries: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_INGESTION_MAX_RETRIES", "3"))
    )
    ingestion_backoff_ms: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_INGESTION_BACKOFF_MS", "500"))
    )
    ingestion_workers: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_INGESTION_WORKERS", "1"))
    )
    # Pending Redis entries idle longer than this are reclaimed; 0 disables
    ingestion_claim_idle_ms: int = field(
        default_factory=lambda: int(os.getenv("RAGDESK_INGESTION_CLAIM_IDLE_MS", "60000"))
    )

    # ===== Catalog / Bindings =====
    document_store_dir: str = field(
        default_factory=lambda: os.getenv("RAGDESK_DOCUMENT_STORE_DIR", "")
    )
    # Empty = keep documents in memory only

    bot_bindings: str = field(default_factory=lambda: os.getenv("RAGDESK_BOT_BINDINGS", ""))
    # JSON: {"bot_id" | "tenant:bot_id": [{"kb_id": "...", "weight": 1.0, "priority": 0}, ...]}

    # ===== Derived =====

    def resolved_embedding_api_key(self) -> str:
        return resolve_api_key(self.embedding_api_key, self.embedding_provider)

    def resolved_llm_api_key(self) -> str:
        return resolve_api_key(self.llm_api_key, self.llm_provider)

    def clamped_max_retries(self) -> int:
        return int(clamp(self.ingestion_max_retries, 0, 10))

    def clamped_workers(self) -> int:
        return int(clamp(self.ingestion_workers, 1, 32))

    def rag_options(self) -> RAGOptions:
        return RAGOptions(
            collection=self.collection,
            top_k=self.rag_top_k if self.rag_top_k > 0 else 5,
            score_threshold=self.rag_score_threshold,
            rag_timeout_ms=self.rag_timeout_ms,
            embedding_timeout_ms=self.embedding_timeout_ms,
            retrieve_timeout_ms=self.retrieve_timeout_ms,
            retrieve_concurrency=int(clamp(self.retrieve_concurrency, 1, 64)),
            llm_timeout_ms=self.llm_timeout_ms,
            llm_temperature=self.llm_temperature,
            llm_max_tokens=self.llm_max_tokens,
            rerank_weight=clamp(self.rerank_weight, 0.0, 1.0),
            system_prompt=self.system_prompt,
            refusal_message=self.refusal_message,
        )

    def ingestion_options(self) -> IngestionOptions:
        return IngestionOptions(
            collection=self.collection,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            embedding_timeout_ms=self.embedding_timeout_ms,
            async_enabled=self.ingestion_async,
        )
