"""Tests for embedding/LLM provider registries and the OpenAI-compatible adapters."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from ragdesk.application.ports.llm_port import GenerationRequest
from ragdesk.domain.errors import EmbeddingError, LLMError
from ragdesk.infrastructure.embeddings.openai_embedding_adapter import OpenAIEmbeddingAdapter
from ragdesk.infrastructure.embeddings.registry import (
    BatchingEmbedder,
    DeterministicEmbeddingAdapter,
    EmbeddingConfig,
    new_embedding_provider,
    register_embedding_provider,
)
from ragdesk.infrastructure.llm.openai_chat_adapter import OpenAIChatAdapter
from ragdesk.infrastructure.llm.registry import (
    NO_INPUT_REPLY,
    TEMPLATE_PREFIX,
    LLMConfig,
    TemplateLLMAdapter,
    new_llm_provider,
)


class TestEmbeddingRegistry:
    def test_fake_is_default(self) -> None:
        provider = new_embedding_provider(EmbeddingConfig(provider="", dim=16))
        assert isinstance(provider, DeterministicEmbeddingAdapter)
        assert provider.dim == 16

    def test_unknown_provider_falls_back(self) -> None:
        provider = new_embedding_provider(EmbeddingConfig(provider="no-such-provider"))
        assert isinstance(provider, DeterministicEmbeddingAdapter)

    def test_remote_provider_without_endpoint_falls_back(self) -> None:
        provider = new_embedding_provider(EmbeddingConfig(provider="OpenAI", endpoint=" "))
        assert isinstance(provider, DeterministicEmbeddingAdapter)

    def test_remote_provider_with_endpoint(self) -> None:
        provider = new_embedding_provider(
            EmbeddingConfig(provider="deepseek", endpoint="https://api.deepseek.com/v1", dim=1024)
        )
        assert isinstance(provider, OpenAIEmbeddingAdapter)
        assert provider.model == "deepseek-embedding"
        assert provider.dim == 1024

    def test_custom_registration(self) -> None:
        marker = DeterministicEmbeddingAdapter(model="custom", dim=4)
        register_embedding_provider(" Custom ", lambda cfg: marker)
        assert new_embedding_provider(EmbeddingConfig(provider="custom")) is marker

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            register_embedding_provider("  ", lambda cfg: DeterministicEmbeddingAdapter())


class TestDeterministicEmbedding:
    @pytest.mark.asyncio
    async def test_same_text_same_vector(self) -> None:
        emb = DeterministicEmbeddingAdapter(dim=8)
        a, b, c = await emb.embed(["refund", "refund", "shipping"])
        assert a == b
        assert a != c
        assert len(a) == 8
        assert all(-1.0 <= x <= 1.0 for x in a)

    def test_invalid_dim_uses_default(self) -> None:
        assert DeterministicEmbeddingAdapter(dim=0).dim == 384


class TestBatchingEmbedder:
    @pytest.mark.asyncio
    async def test_batches_and_keeps_order(self) -> None:
        inner = DeterministicEmbeddingAdapter(dim=4)
        spy = AsyncMock(side_effect=inner.embed)
        inner.embed = spy  # type: ignore[method-assign]
        batching = BatchingEmbedder(inner, batch_size=2)

        texts = ["a", "b", "c", "d", "e"]
        vectors = await batching.embed(texts)

        assert spy.await_count == 3
        assert vectors == [inner.vector_for(t) for t in texts]
        assert batching.model == inner.model
        assert batching.dim == 4

    @pytest.mark.asyncio
    async def test_count_mismatch(self) -> None:
        inner = MagicMock(model="m", dim=2)
        inner.embed = AsyncMock(return_value=[[0.0, 1.0]])
        with pytest.raises(EmbeddingError) as exc_info:
            await BatchingEmbedder(inner).embed(["a", "b"])
        assert exc_info.value.code == "EMBEDDING_COUNT_MISMATCH"


def _embedding_response(*vectors: list[float]) -> SimpleNamespace:
    items = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    return SimpleNamespace(data=list(reversed(items)))


class TestOpenAIEmbeddingAdapter:
    @pytest.mark.asyncio
    async def test_vectors_sorted_by_index(self) -> None:
        adapter = OpenAIEmbeddingAdapter(base_url="http://gw/v1", model="m", dim=2)
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=_embedding_response([1.0, 0.0], [0.0, 1.0]))
        adapter._client = client

        assert await adapter.embed(["x", "y"]) == [[1.0, 0.0], [0.0, 1.0]]
        client.embeddings.create.assert_awaited_once_with(model="m", input=["x", "y"])

    @pytest.mark.asyncio
    async def test_empty_input_skips_call(self) -> None:
        adapter = OpenAIEmbeddingAdapter(base_url="http://gw/v1")
        adapter._client = MagicMock()
        assert await adapter.embed([]) == []

    @pytest.mark.asyncio
    async def test_dim_mismatch(self) -> None:
        adapter = OpenAIEmbeddingAdapter(base_url="http://gw/v1", dim=3)
        adapter._client = MagicMock()
        adapter._client.embeddings.create = AsyncMock(return_value=_embedding_response([1.0, 0.0]))
        with pytest.raises(EmbeddingError) as exc_info:
            await adapter.embed(["x"])
        assert exc_info.value.code == "EMBEDDING_DIM_MISMATCH"

    @pytest.mark.asyncio
    async def test_empty_data(self) -> None:
        adapter = OpenAIEmbeddingAdapter(base_url="http://gw/v1")
        adapter._client = MagicMock()
        adapter._client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[]))
        with pytest.raises(EmbeddingError) as exc_info:
            await adapter.embed(["x"])
        assert exc_info.value.code == "EMBEDDING_EMPTY"

    @pytest.mark.asyncio
    async def test_transport_error_is_mapped(self) -> None:
        adapter = OpenAIEmbeddingAdapter(base_url="http://gw/v1")
        adapter._client = MagicMock()
        adapter._client.embeddings.create = AsyncMock(side_effect=RuntimeError("502 bad gateway"))
        with pytest.raises(EmbeddingError) as exc_info:
            await adapter.embed(["x"])
        assert exc_info.value.code == "EMBEDDING_REQUEST_FAILED"
        assert "502" in str(exc_info.value)


class TestLLMRegistry:
    def test_fake_uses_template(self) -> None:
        llm = new_llm_provider(LLMConfig(provider="fake"))
        assert isinstance(llm, TemplateLLMAdapter)
        assert llm.model == "fake-llm-v1"

    def test_unknown_provider_falls_back(self) -> None:
        llm = new_llm_provider(LLMConfig(provider="mystery"))
        assert isinstance(llm, TemplateLLMAdapter)
        assert llm.model == "template-llm-v1"

    def test_openai_with_endpoint(self) -> None:
        llm = new_llm_provider(LLMConfig(provider="openai", endpoint="https://api.openai.com/v1", api_key="k"))
        assert isinstance(llm, OpenAIChatAdapter)
        assert llm.model == "gpt-4o-mini"

    def test_deepseek_without_endpoint_falls_back(self) -> None:
        assert isinstance(new_llm_provider(LLMConfig(provider="deepseek")), TemplateLLMAdapter)

    def test_template_is_offline_whatever_the_model_name(self) -> None:
        llm = new_llm_provider(LLMConfig(provider="template", model="support-echo"))
        assert llm.model == "support-echo"
        assert llm.offline is True

    def test_remote_adapter_is_online(self) -> None:
        llm = new_llm_provider(LLMConfig(provider="openai", endpoint="https://llm.internal/v1", model="fake-ranker"))
        assert llm.offline is False


class TestTemplateLLM:
    @pytest.mark.asyncio
    async def test_echoes_truncated_prompt(self) -> None:
        resp = await TemplateLLMAdapter().generate(GenerationRequest(prompt="p" * 500, system="be nice"))
        assert resp.text == TEMPLATE_PREFIX + "p" * 180 + "..."
        assert resp.usage.prompt_tokens == 3
        assert resp.usage.total_tokens == resp.usage.prompt_tokens + resp.usage.completion_tokens

    @pytest.mark.asyncio
    async def test_empty_prompt(self) -> None:
        resp = await TemplateLLMAdapter().generate(GenerationRequest(prompt="  "))
        assert resp.text == NO_INPUT_REPLY


def _chat_response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4, total_tokens=16),
    )


class TestOpenAIChatAdapter:
    @pytest.mark.asyncio
    async def test_generate_sends_messages(self) -> None:
        adapter = OpenAIChatAdapter(base_url="http://gw/v1", model="m")
        adapter._client = MagicMock()
        adapter._client.chat.completions.create = AsyncMock(return_value=_chat_response("  Answer.  "))

        resp = await adapter.generate(GenerationRequest(prompt="Q?", system="sys", temperature=0.0, max_tokens=64))

        assert resp.text == "Answer."
        assert resp.usage.total_tokens == 16
        kwargs = adapter._client.chat.completions.create.await_args.kwargs
        assert kwargs["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "Q?"}]
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 64

    @pytest.mark.asyncio
    async def test_no_choices(self) -> None:
        adapter = OpenAIChatAdapter(base_url="http://gw/v1")
        adapter._client = MagicMock()
        adapter._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))
        with pytest.raises(LLMError) as exc_info:
            await adapter.generate(GenerationRequest(prompt="Q?"))
        assert exc_info.value.code == "LLM_EMPTY_RESPONSE"

    @pytest.mark.asyncio
    async def test_error_is_mapped(self) -> None:
        adapter = OpenAIChatAdapter(base_url="http://gw/v1")
        adapter._client = MagicMock()
        adapter._client.chat.completions.create = AsyncMock(side_effect=TimeoutError("slow"))
        with pytest.raises(LLMError) as exc_info:
            await adapter.generate(GenerationRequest(prompt="Q?"))
        assert exc_info.value.code == "LLM_REQUEST_FAILED"
