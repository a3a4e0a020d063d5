import logging

from config.settings import settings
from services.llm.base import ImageInput, LLMProvider, LLMResponse

log = logging.getLogger(__name__)


class ClaudeProvider(LLMProvider):
    """Anthropic Claude provider for image descriptions."""

    provider_name = "claude"

    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.api_key = api_key or settings.claude_api_key
        self.default_model = model or settings.claude_model

    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        images: list[ImageInput] | None = None,
    ) -> LLMResponse:
        import anthropic

        model = model or self.default_model
        client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            timeout=settings.caption_timeout_seconds,
        )

        content = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.b64()},
            }
            for image in images or []
        ]
        content.append({"type": "text", "text": prompt})

        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system:
            kwargs["system"] = system

        message = await client.messages.create(**kwargs)
        text = "".join(block.text for block in message.content if block.type == "text")

        return LLMResponse(
            content=text,
            model=model,
            provider=self.provider_name,
            usage={
                "prompt_tokens": message.usage.input_tokens,
                "completion_tokens": message.usage.output_tokens,
            },
        )

    async def is_available(self) -> bool:
        return bool(self.api_key)
