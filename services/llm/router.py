import logging

from config.settings import settings
from services.captions.errors import ProviderUnconfigured
from services.llm.base import ImageInput, LLMProvider, LLMResponse
from services.llm.providers.claude import ClaudeProvider
from services.llm.providers.gemini import GeminiProvider
from services.llm.providers.ollama import OllamaProvider
from services.llm.providers.openai import OpenAIProvider

log = logging.getLogger(__name__)


class LLMRouter:
    """Routes vision requests to the appropriate provider.

    Local Ollama is always registered. Cloud providers are registered only
    when their API key is set, so asking for one without a key is reported
    as ProviderUnconfigured instead of failing at request time.
    """

    def __init__(self, providers: dict[str, LLMProvider] | None = None):
        self._providers: dict[str, LLMProvider] = {}
        if providers is None:
            self._init_providers()
        else:
            self._providers.update(providers)

    def _init_providers(self):
        self._providers["ollama"] = OllamaProvider()
        if settings.claude_api_key:
            self._providers["claude"] = ClaudeProvider()
        if settings.gemini_api_key:
            self._providers["gemini"] = GeminiProvider()
        if settings.openai_api_key:
            self._providers["openai"] = OpenAIProvider()

    def has_provider(self, name: str | None = None) -> bool:
        return (name or settings.default_provider.value) in self._providers

    def get_provider(self, name: str | None = None) -> LLMProvider:
        name = name or settings.default_provider.value
        if name not in self._providers:
            available = list(self._providers.keys())
            raise ProviderUnconfigured(
                f"Provider '{name}' is not configured. Available: {available}"
            )
        return self._providers[name]

    async def complete(
        self,
        prompt: str,
        system: str = "",
        provider: str | None = None,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        images: list[ImageInput] | None = None,
    ) -> LLMResponse:
        """Send a completion request to the specified (or default) provider."""
        p = self.get_provider(provider)
        log.info(f"Routing to {p.provider_name} (model={model or 'default'}, images={len(images or [])})")
        return await p.complete(
            prompt=prompt,
            system=system,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            images=images,
        )

    async def health(self) -> dict:
        result = {}
        for name, provider in self._providers.items():
            result[name] = await provider.is_available()
        return result


# Singleton instance
llm_router = LLMRouter()
