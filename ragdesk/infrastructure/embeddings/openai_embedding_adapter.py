from collections.abc import Sequence
from importlib import import_module
from typing import Any

from ragdesk.domain.errors import EmbeddingError


class OpenAIEmbeddingAdapter:
    """OpenAI-compatible ``/embeddings`` client (OpenAI, DeepSeek, self-hosted gateways)."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "text-embedding-3-small",
        dim: int = 384,
        timeout_ms: int = 15000,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.dim = dim
        self._api_key = api_key or "EMPTY"
        self._timeout_s = max(timeout_ms, 1) / 1000.0
        # Defer import of openai to first use to avoid hard dependency in tests
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if self._client is None:
            module = import_module("openai")
            self._client = module.AsyncOpenAI(
                base_url=self.base_url,
                api_key=self._api_key,
                timeout=self._timeout_s,
                max_retries=0,
            )
        return self._client

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            resp: Any = await self._get_client().embeddings.create(model=self.model, input=list(texts))
        except Exception as ex:  # noqa: BLE001
            raise EmbeddingError(f"embedding request failed: {ex}") from ex

        data = sorted(resp.data or [], key=lambda d: d.index)
        if not data:
            raise EmbeddingError("embedding response has no data", code="EMBEDDING_EMPTY")
        vectors = [list(d.embedding) for d in data]
        for vec in vectors:
            if self.dim > 0 and len(vec) != self.dim:
                raise EmbeddingError(
                    f"embedding dim {len(vec)} does not match configured {self.dim}",
                    code="EMBEDDING_DIM_MISMATCH",
                )
        return vectors
