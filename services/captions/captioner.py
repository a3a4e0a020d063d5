import asyncio
import base64
import binascii
import logging
import mimetypes
from pathlib import Path
from typing import Protocol

import httpx

from config.settings import settings
from services.captions.errors import (
    ProviderEmptyResult,
    ProviderFailure,
    ProviderUnconfigured,
)
from services.llm import LLMRouter, llm_router
from services.llm.base import ImageInput

log = logging.getLogger(__name__)

SHORT_CAPTION_PROMPT = (
    "Generate a concise alt text description for this image in 15 words or less. "
    "Focus on the main subject and key visual elements that would be important for "
    'accessibility. Do not include "Image of" or "Photo of" in your response.'
)

DETAILED_CAPTION_PROMPT = (
    "You are an agent describing images to a blind person. There is an image attached "
    "with this prompt, describe it to a blind person in 1000 characters or less, but make "
    "sure the description is not generic. For example, for a kid smiling while cutting a "
    'cake, don\'t just describe it as "Person cutting birthday cake", make sure the '
    "description has the image. Only give me the image description, no other commentary."
)

# Degraded providers answer with this instead of raising
UNAVAILABLE_SENTINEL = "caption unavailable"


class CaptionProvider(Protocol):
    def is_configured(self) -> bool: ...

    async def generate_short_caption(self, source_ref: str) -> str: ...

    async def generate_detailed_caption(self, source_ref: str) -> str: ...


def check_caption(text: str | None) -> str:
    """Return the cleaned caption, or raise ProviderEmptyResult."""
    cleaned = (text or "").strip()
    if not cleaned:
        raise ProviderEmptyResult("No caption generated")
    if UNAVAILABLE_SENTINEL in cleaned.lower():
        raise ProviderEmptyResult("Captioning service unavailable")
    return cleaned


class Captioner:
    """Generates captions by sending the image to a vision model via the LLM router."""

    def __init__(
        self,
        router: LLMRouter | None = None,
        provider: str | None = None,
        model: str | None = None,
    ):
        self.router = router or llm_router
        self.provider = provider or settings.caption_provider.value
        self.model = model

    def is_configured(self) -> bool:
        return self.router.has_provider(self.provider)

    async def generate_short_caption(self, source_ref: str) -> str:
        return await self._caption(source_ref, SHORT_CAPTION_PROMPT, max_tokens=100)

    async def generate_detailed_caption(self, source_ref: str) -> str:
        return await self._caption(source_ref, DETAILED_CAPTION_PROMPT, max_tokens=300)

    async def _caption(self, source_ref: str, prompt: str, max_tokens: int) -> str:
        if not self.is_configured():
            raise ProviderUnconfigured(
                f"Captioning provider '{self.provider}' has no API key configured"
            )

        image = await load_image(source_ref)
        try:
            resp = await self.router.complete(
                prompt=prompt,
                provider=self.provider,
                model=self.model,
                temperature=0.3,
                max_tokens=max_tokens,
                images=[image],
            )
        except ProviderUnconfigured:
            raise
        except Exception as e:
            log.error(f"Caption request to {self.provider} failed: {e}")
            raise ProviderFailure(f"Caption request failed: {e}") from e

        return check_caption(resp.content)


async def load_image(source_ref: str) -> ImageInput:
    """Resolve a source reference (data URI, http(s) URL or file path) to image bytes."""
    try:
        if source_ref.startswith("data:"):
            return _decode_data_uri(source_ref)
        if source_ref.startswith(("http://", "https://")):
            return await _fetch_image(source_ref)
        return await asyncio.to_thread(_read_file, source_ref)
    except (OSError, ValueError, binascii.Error, httpx.HTTPError, httpx.InvalidURL) as e:
        raise ProviderFailure(f"Could not read image {source_ref[:120]}: {e}") from e


def _decode_data_uri(uri: str) -> ImageInput:
    header, _, payload = uri.partition(",")
    mime_type = header[len("data:") :].split(";")[0] or "image/jpeg"
    return ImageInput(data=base64.b64decode(payload, validate=True), mime_type=mime_type)


async def _fetch_image(url: str) -> ImageInput:
    async with httpx.AsyncClient(timeout=settings.caption_timeout_seconds, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
    mime_type = resp.headers.get("content-type", "").split(";")[0] or _guess_mime(url)
    return ImageInput(data=resp.content, mime_type=mime_type)


def _read_file(path: str) -> ImageInput:
    if path.startswith("file://"):
        path = path[len("file://") :]
    p = Path(path)
    return ImageInput(data=p.read_bytes(), mime_type=_guess_mime(p.name))


def _guess_mime(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "image/jpeg"
