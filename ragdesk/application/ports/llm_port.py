from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "system" | "user" | "assistant"
    content: str


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    system: str = ""
    temperature: float = 0.2
    max_tokens: int = 512

    def messages(self) -> list[ChatMessage]:
        out = []
        if self.system.strip():
            out.append(ChatMessage(role="system", content=self.system))
        out.append(ChatMessage(role="user", content=self.prompt))
        return out


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class LLMResponse:
    text: str
    finish_reason: str = "stop"
    usage: LLMUsage = field(default_factory=LLMUsage)


@runtime_checkable
class LLMPort(Protocol):
    model: str

    async def generate(self, req: GenerationRequest) -> LLMResponse: ...
