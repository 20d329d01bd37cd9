# ragdesk/application/dto/query_dto.py
from __future__ import annotations

from dataclasses import dataclass, field

from ragdesk.application.ports.llm_port import LLMUsage
from ragdesk.domain.models import Reference

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer using the provided context. "
    "If the context is insufficient, say you don't know."
)
DEFAULT_REFUSAL_MESSAGE = (
    "I don't have enough information to answer that based on the provided knowledge."
)


@dataclass(frozen=True)
class QueryRequest:
    """
    DTO for asking a bot a question.

    - bot_id / message: required (validated in the init stage)
    - top_k / threshold: <= 0 means "use the configured default"
    - expansions: optional extra query variants, embedded in the same batch
    - expansion_weights: per-variant weights aligned with [normalized, *expansions]
    """

    tenant_id: str
    bot_id: str
    message: str
    top_k: int = 0
    threshold: float = 0.0
    expansions: tuple[str, ...] = ()
    expansion_weights: tuple[float, ...] = ()
    session_id: str = ""


@dataclass(frozen=True)
class RAGAnswer:
    """Final answer with confidence and citations; ``refused`` marks a deliberate non-answer."""

    reply: str
    confidence: float
    references: list[Reference] = field(default_factory=list)
    refused: bool = False
    model: str = ""
    usage: LLMUsage = field(default_factory=LLMUsage)


@dataclass(frozen=True)
class RAGOptions:
    collection: str = "ragdesk_chunks"
    top_k: int = 5
    score_threshold: float = 0.2
    rag_timeout_ms: int = 20000
    embedding_timeout_ms: int = 15000
    retrieve_timeout_ms: int = 8000
    retrieve_concurrency: int = 8
    llm_timeout_ms: int = 15000
    llm_temperature: float = 0.2
    llm_max_tokens: int = 512
    rerank_weight: float = 0.3
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    refusal_message: str = DEFAULT_REFUSAL_MESSAGE
