"""Application ports package.

Re-exports the ports so use cases and wiring can import from one place.
"""

from ragdesk.application.ports.document_parser_port import DocumentParserPort
from ragdesk.application.ports.embedding_port import EmbeddingPort
from ragdesk.application.ports.knowledge_repo_port import BotBindingsPort, DocumentRepositoryPort
from ragdesk.application.ports.llm_port import (
    ChatMessage,
    GenerationRequest,
    LLMPort,
    LLMResponse,
    LLMUsage,
)
from ragdesk.application.ports.vector_store_port import (
    VectorCondition,
    VectorFilter,
    VectorPoint,
    VectorStorePort,
    require_scope,
)
from ragdesk.application.ports.work_queue_port import QueuedJob, WorkQueuePort

__all__ = [
    "BotBindingsPort",
    "ChatMessage",
    "DocumentParserPort",
    "DocumentRepositoryPort",
    "EmbeddingPort",
    "GenerationRequest",
    "LLMPort",
    "LLMResponse",
    "LLMUsage",
    "QueuedJob",
    "VectorCondition",
    "VectorFilter",
    "VectorPoint",
    "VectorStorePort",
    "WorkQueuePort",
    "require_scope",
]
