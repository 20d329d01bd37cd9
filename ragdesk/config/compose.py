"""Dependency injection container with environment-driven wiring.

Why: Einzige Stelle für das Verdrahten; Adapter werden über Settings
     gewählt (Vector-Backend, Queue-Backend, Provider).
"""

from ragdesk.application.ports import (
    BotBindingsPort,
    DocumentParserPort,
    DocumentRepositoryPort,
    EmbeddingPort,
    LLMPort,
    VectorStorePort,
    WorkQueuePort,
)
from ragdesk.application.use_cases.ingest_documents import IngestDocuments
from ragdesk.application.use_cases.ingestion_worker import IngestionWorker
from ragdesk.application.use_cases.query_knowledge_base import QueryKnowledgeBase
from ragdesk.config.settings import AppSettings
from ragdesk.domain.errors import ConfigurationError


class Container:
    """Dependency injection container for application components.

    Responsibilities:
    1. Read settings from environment (via AppSettings)
    2. Choose adapters based on settings (vector_backend, workqueue_backend, providers)
    3. Inject dependencies into use cases

    Adapters are built lazily and cached, so one container shares one
    vector store, queue and catalog across ingestion and query.
    """

    def __init__(self, settings: AppSettings | None = None) -> None:
        self.settings = settings or AppSettings()
        self._embedding: EmbeddingPort | None = None
        self._llm: LLMPort | None = None
        self._vector_store: VectorStorePort | None = None
        self._work_queue: WorkQueuePort | None = None
        self._repository: DocumentRepositoryPort | None = None
        self._bindings: BotBindingsPort | None = None
        self._parser: DocumentParserPort | None = None

    # ===== Adapters =====

    def get_embedding(self) -> EmbeddingPort:
        if self._embedding is None:
            self._embedding = self._build_embedding()
        return self._embedding

    def get_llm(self) -> LLMPort:
        if self._llm is None:
            self._llm = self._build_llm()
        return self._llm

    def get_vector_store(self) -> VectorStorePort:
        if self._vector_store is None:
            self._vector_store = self._build_vector_store()
        return self._vector_store

    def get_work_queue(self) -> WorkQueuePort:
        if self._work_queue is None:
            self._work_queue = self._build_work_queue()
        return self._work_queue

    def get_repository(self) -> DocumentRepositoryPort:
        if self._repository is None:
            from ragdesk.infrastructure.repositories.document_repository import DocumentRepository

            self._repository = DocumentRepository(self.settings.document_store_dir or None)
        return self._repository

    def get_bindings(self) -> BotBindingsPort:
        if self._bindings is None:
            from ragdesk.infrastructure.repositories.bot_bindings import (
                StaticBotBindings,
                parse_bot_bindings,
            )

            self._bindings = StaticBotBindings(parse_bot_bindings(self.settings.bot_bindings))
        return self._bindings

    def get_parser(self) -> DocumentParserPort:
        if self._parser is None:
            from ragdesk.infrastructure.parsing.document_parser import DocumentParser

            self._parser = DocumentParser()
        return self._parser

    # ===== Use Cases =====

    def build_ingest_use_case(self) -> IngestDocuments:
        return IngestDocuments(
            repo=self.get_repository(),
            parser=self.get_parser(),
            embedding=self.get_embedding(),
            vector_store=self.get_vector_store(),
            queue=self.get_work_queue() if self.settings.ingestion_async else None,
            options=self.settings.ingestion_options(),
        )

    def build_query_use_case(self) -> QueryKnowledgeBase:
        return QueryKnowledgeBase(
            bindings=self.get_bindings(),
            embedding=self.get_embedding(),
            vector_store=self.get_vector_store(),
            llm=self.get_llm(),
            options=self.settings.rag_options(),
        )

    def build_ingestion_worker(self) -> IngestionWorker:
        ingest = self.build_ingest_use_case()
        return IngestionWorker(
            queue=self.get_work_queue(),
            process=ingest.process,
            worker_count=self.settings.clamped_workers(),
            backoff_base_ms=self.settings.ingestion_backoff_ms,
        )

    # ===== Builders =====

    def _build_embedding(self) -> EmbeddingPort:
        from ragdesk.infrastructure.embeddings.registry import (
            BatchingEmbedder,
            EmbeddingConfig,
            new_embedding_provider,
        )

        s = self.settings
        inner = new_embedding_provider(
            EmbeddingConfig(
                provider=s.embedding_provider,
                endpoint=s.embedding_endpoint,
                api_key=s.resolved_embedding_api_key(),
                model=s.embedding_model,
                dim=s.embedding_dim,
                timeout_ms=s.embedding_timeout_ms,
            )
        )
        return BatchingEmbedder(inner, batch_size=s.embedding_batch_size)

    def _build_llm(self) -> LLMPort:
        from ragdesk.infrastructure.llm.registry import LLMConfig, new_llm_provider

        s = self.settings
        return new_llm_provider(
            LLMConfig(
                provider=s.llm_provider,
                endpoint=s.llm_endpoint,
                api_key=s.resolved_llm_api_key(),
                model=s.llm_model,
                timeout_ms=s.llm_timeout_ms,
            )
        )

    def _build_vector_store(self) -> VectorStorePort:
        backend = self.settings.vector_backend
        if backend == "qdrant":
            from ragdesk.infrastructure.vectorstore.qdrant_adapter import (
                QdrantConfig,
                QdrantVectorStoreAdapter,
            )

            return QdrantVectorStoreAdapter(
                QdrantConfig(
                    url=self.settings.qdrant_url,
                    api_key=self.settings.qdrant_api_key or None,
                    timeout_s=self.settings.qdrant_timeout_s,
                )
            )
        if backend == "memory":
            from ragdesk.infrastructure.vectorstore.in_memory_vector_store import (
                InMemoryVectorStore,
            )

            return InMemoryVectorStore()
        raise ConfigurationError(f"Unknown vector backend: {backend}", code="VECTOR_BACKEND_UNKNOWN")

    def _build_work_queue(self) -> WorkQueuePort:
        backend = self.settings.workqueue_backend
        if backend == "redis":
            from ragdesk.infrastructure.queues.redis_streams_adapter import (
                RedisQueueConfig,
                RedisWorkQueueAdapter,
            )

            return RedisWorkQueueAdapter(
                RedisQueueConfig(
                    url=self.settings.redis_url,
                    max_retries=self.settings.clamped_max_retries(),
                    claim_idle_ms=max(self.settings.ingestion_claim_idle_ms, 0),
                )
            )
        if backend == "memory":
            from ragdesk.infrastructure.queues.in_memory_queue import InMemoryWorkQueue

            return InMemoryWorkQueue(max_retries=self.settings.clamped_max_retries())
        raise ConfigurationError(f"Unknown work queue backend: {backend}", code="QUEUE_BACKEND_UNKNOWN")
