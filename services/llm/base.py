import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ImageInput:
    data: bytes
    mime_type: str = "image/jpeg"

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64()}"


@dataclass
class LLMResponse:
    content: str
    model: str
    provider: str
    usage: dict = field(default_factory=dict)
    raw: dict | None = None


class LLMProvider(ABC):
    """Base class for all vision-capable LLM providers."""

    provider_name: str = "base"

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        images: list[ImageInput] | None = None,
    ) -> LLMResponse: ...

    @abstractmethod
    async def is_available(self) -> bool: ...
