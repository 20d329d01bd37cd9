from dataclasses import dataclass
from importlib import import_module
from typing import Any, cast

from ragdesk.application.ports.llm_port import GenerationRequest, LLMResponse, LLMUsage
from ragdesk.domain.errors import LLMError


@dataclass
class OpenAIChatAdapter:
    base_url: str  # e.g. "https://api.openai.com/v1" or "https://api.deepseek.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    timeout_ms: int = 15000
    offline = False

    def __post_init__(self) -> None:
        # Defer import of openai to generate() to avoid hard dependency in tests
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if self._client is None:
            module = import_module("openai")
            self._client = module.AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key or "EMPTY",
                timeout=max(self.timeout_ms, 1) / 1000.0,
                max_retries=0,
            )
        return self._client

    async def generate(self, req: GenerationRequest) -> LLMResponse:
        payload: Any = [m.__dict__ for m in req.messages()]
        try:
            resp: Any = await self._get_client().chat.completions.create(
                model=self.model,
                messages=cast(Any, payload),
                temperature=req.temperature,
                max_tokens=req.max_tokens,
            )
        except Exception as ex:  # noqa: BLE001
            # Translate external errors to domain-specific errors
            raise LLMError(f"LLM communication failed: {ex}") from ex

        if not resp.choices:
            raise LLMError("LLM returned no choices", code="LLM_EMPTY_RESPONSE")
        choice = resp.choices[0]
        usage = getattr(resp, "usage", None)
        return LLMResponse(
            text=(choice.message.content or "").strip(),
            finish_reason=choice.finish_reason or "stop",
            usage=LLMUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )
