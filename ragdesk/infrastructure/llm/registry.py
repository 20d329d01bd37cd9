"""LLM provider registry and the offline template provider.

Why: Same name rules as the embedding registry. Offline providers answer
     deterministically so the pipeline runs end-to-end without a model.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from ragdesk.application.ports.llm_port import GenerationRequest, LLMPort, LLMResponse, LLMUsage
from ragdesk.config.logging import get_logger
from ragdesk.domain.services.reranking import truncate_text
from ragdesk.domain.services.tokenizer import estimate_tokens

TEMPLATE_MODEL = "template-llm-v1"
FAKE_MODEL = "fake-llm-v1"
TEMPLATE_PREFIX = "RAG response (template): "
TEMPLATE_PROMPT_CHARS = 180
NO_INPUT_REPLY = "No input provided."

logger = get_logger(__name__)


@dataclass(frozen=True)
class LLMConfig:
    provider: str = "fake"
    endpoint: str = ""
    api_key: str = ""
    model: str = ""
    timeout_ms: int = 15000


LLMFactory = Callable[[LLMConfig], LLMPort]

_PROVIDERS: dict[str, LLMFactory] = {}


def register_llm_provider(name: str, factory: LLMFactory) -> None:
    key = name.strip().lower()
    if not key:
        raise ValueError("llm provider name must not be empty")
    _PROVIDERS[key] = factory


def new_llm_provider(cfg: LLMConfig) -> LLMPort:
    key = cfg.provider.strip().lower() or "fake"
    factory = _PROVIDERS.get(key)
    if factory is None:
        logger.warning("llm_provider_unknown", provider=key, fallback="template")
        return TemplateLLMAdapter()
    return factory(cfg)


class TemplateLLMAdapter:
    """Echoes a truncated prompt; never calls out."""

    offline = True

    def __init__(self, model: str = TEMPLATE_MODEL) -> None:
        self.model = model

    async def generate(self, req: GenerationRequest) -> LLMResponse:
        prompt = req.prompt.strip()
        if not prompt:
            text = NO_INPUT_REPLY
        else:
            text = TEMPLATE_PREFIX + truncate_text(prompt, TEMPLATE_PROMPT_CHARS)
        prompt_tokens = estimate_tokens(req.system) + estimate_tokens(req.prompt)
        completion_tokens = estimate_tokens(text)
        return LLMResponse(
            text=text,
            finish_reason="stop",
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )


def _openai_compatible(default_model: str) -> LLMFactory:
    def factory(cfg: LLMConfig) -> LLMPort:
        if not cfg.endpoint.strip():
            logger.warning("llm_endpoint_missing", provider=cfg.provider, fallback="template")
            return TemplateLLMAdapter()
        from ragdesk.infrastructure.llm.openai_chat_adapter import OpenAIChatAdapter

        return OpenAIChatAdapter(
            base_url=cfg.endpoint.strip(),
            api_key=cfg.api_key,
            model=cfg.model or default_model,
            timeout_ms=cfg.timeout_ms,
        )

    return factory


register_llm_provider("template", lambda cfg: TemplateLLMAdapter(model=cfg.model or TEMPLATE_MODEL))
register_llm_provider("fake", lambda cfg: TemplateLLMAdapter(model=FAKE_MODEL))
register_llm_provider("openai", _openai_compatible("gpt-4o-mini"))
register_llm_provider("http", _openai_compatible("gpt-4o-mini"))
register_llm_provider("deepseek", _openai_compatible("deepseek-chat"))
