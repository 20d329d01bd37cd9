"""Domain errors (typed) for ingestion and RAG answering.

Why: Unified error family for the Application layer, without Infra leaks.
     Every error carries a stable upper-snake ``code`` so callers can map
     it to a transport status without string matching.
"""


class DomainError(Exception):
    """Base class for domain-specific errors."""

    default_code = "INTERNAL"

    def __init__(self, message: str = "", code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        if self.message:
            return f"{self.code}: {self.message}"
        return self.code


class ValidationError(DomainError):
    """Invalid input/domain state (caller-fixable)."""

    default_code = "INVALID_ARGUMENT"


class DocumentError(ValidationError):
    """Document loading/parsing failed."""

    default_code = "DOC_INVALID"


class NotFoundError(DomainError):
    """Referenced record (document, version, bot, chunk) does not exist."""

    default_code = "NOT_FOUND"


class ConflictError(DomainError):
    """Duplicate key or state conflict."""

    default_code = "CONFLICT"


class ConfigurationError(DomainError):
    """Missing endpoint/secret or otherwise unusable configuration."""

    default_code = "CONFIG_INVALID"


class UpstreamError(DomainError):
    """A dependency call failed or returned malformed data."""

    default_code = "UPSTREAM_FAILED"


# Infrastructure-mapped errors
class EmbeddingError(UpstreamError):
    """Embedding backend failed or is misconfigured."""

    default_code = "EMBEDDING_REQUEST_FAILED"


class VectorStoreError(UpstreamError):
    """Vector store backend failed or is misconfigured."""

    default_code = "VECTORDB_REQUEST_FAILED"


class LLMError(UpstreamError):
    """LLM backend failed or is misconfigured."""

    default_code = "LLM_REQUEST_FAILED"


class WorkQueueError(UpstreamError):
    """Error in work queue operations."""

    default_code = "QUEUE_REQUEST_FAILED"


class PipelineTimeoutError(UpstreamError):
    """A stage ran out of its share of the request deadline."""

    default_code = "RAG_TIMEOUT"
