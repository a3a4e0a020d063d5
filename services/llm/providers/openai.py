import logging

import httpx

from config.settings import settings
from services.llm.base import ImageInput, LLMProvider, LLMResponse

log = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions with image inputs (gpt-4o family)."""

    provider_name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ):
        self.api_key = api_key or settings.openai_api_key
        self.default_model = model or settings.openai_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")

    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        images: list[ImageInput] | None = None,
    ) -> LLMResponse:
        model = model or self.default_model

        content = [{"type": "text", "text": prompt}]
        for image in images or []:
            # Low detail keeps cost down; alt text does not need full resolution
            content.append(
                {"type": "image_url", "image_url": {"url": image.data_uri(), "detail": "low"}}
            )

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": content})

        async with httpx.AsyncClient(timeout=settings.caption_timeout_seconds) as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": model,
                    "messages": messages,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
            )
            if resp.status_code >= 400:
                detail = _error_message(resp)
                raise httpx.HTTPStatusError(
                    f"OpenAI API error: {detail}", request=resp.request, response=resp
                )
            data = resp.json()

        text = ""
        choices = data.get("choices") or []
        if choices:
            text = choices[0]["message"].get("content") or ""

        usage = data.get("usage") or {}
        return LLMResponse(
            content=text,
            model=model,
            provider=self.provider_name,
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
            },
            raw=data,
        )

    async def is_available(self) -> bool:
        return bool(self.api_key)


def _error_message(resp: httpx.Response) -> str:
    try:
        return resp.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return resp.reason_phrase or str(resp.status_code)
